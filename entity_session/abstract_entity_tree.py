import abc
import inspect
import typing
from collections import deque

import attr
import inflection

from entity_session.entity import Entity, Generated, Identity, ValueObject, EntityOrVoType
from entity_session.exceptions import UnsupportedMapping


def _is_generic(field_type: typing.Type) -> bool:
    return hasattr(field_type, "__origin__")


def _get_wrapped_type(wrapped_type: typing.Type) -> typing.Type:
    return wrapped_type.__args__[0]


def _is_field_nullable(field_type: typing.Type) -> bool:
    return field_type.__origin__ == typing.Union and isinstance(None, field_type.__args__[-1])


def _is_value_object(field_type: typing.Type) -> bool:
    return inspect.isclass(field_type) and issubclass(field_type, ValueObject)


def _is_entity(field_type: typing.Type) -> bool:
    return inspect.isclass(field_type) and issubclass(field_type, Entity)


def _is_list(field_type: typing.Type) -> bool:
    return _is_generic(field_type) and field_type.__origin__ in (list, typing.List)


class Visitor:
    def traverse_from(self, node: "Node") -> None:
        node.accept(self)
        for child in node.children:
            self.traverse_from(child)
        node.farewell(self)

    def visit_field(self, field: "FieldNode") -> None:
        pass

    def leave_field(self, field: "FieldNode") -> None:
        pass

    def visit_entity(self, entity: "EntityNode") -> None:
        pass

    def leave_entity(self, entity: "EntityNode") -> None:
        pass

    def visit_value_object(self, value_object: "ValueObjectNode") -> None:
        pass

    def leave_value_object(self, value_object: "ValueObjectNode") -> None:
        pass


class NodeMeta(type):
    def __new__(mcs, name: str, bases: tuple, namespace: dict) -> typing.Type:
        cls = super().__new__(mcs, name, bases, namespace)
        if inspect.isabstract(cls):
            return cls
        return attr.s(auto_attribs=True)(cls)


class Node(metaclass=NodeMeta):
    name: str
    type: typing.Type
    nullable: bool = False
    children: typing.List["Node"] = attr.Factory(list)

    @abc.abstractmethod
    def accept(self, visitor: Visitor) -> None:
        pass

    @abc.abstractmethod
    def farewell(self, visitor: Visitor) -> None:
        pass


class FieldNode(Node):
    is_identity: bool = False
    is_generated: bool = False

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_field(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_field(self)


class EntityNode(Node):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_entity(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_entity(self)


class ValueObjectNode(Node):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_value_object(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_value_object(self)


@attr.s(auto_attribs=True)
class AbstractEntityTree:
    root: EntityNode

    def __iter__(self) -> typing.Generator[Node, None, None]:
        def iterate_dfs() -> typing.Generator[Node, None, None]:
            nodes_left: typing.Deque[Node] = deque([self.root])

            while nodes_left:
                current = nodes_left.pop()
                yield current
                nodes_left.extend(current.children[::-1])

        return iterate_dfs()

    @property
    def fields(self) -> typing.List[FieldNode]:
        return [node for node in self if isinstance(node, FieldNode)]


def build(root: typing.Type[Entity]) -> AbstractEntityTree:
    def parse_node(node_type: EntityOrVoType, name: str, nullable: bool) -> Node:
        node_children: typing.List[Node] = []

        for field in attr.fields(node_type):
            field_type = field.type
            field_name = field.name
            field_nullable = False
            is_identity = False
            is_generated = False

            if _is_generic(field_type):
                if Identity.is_identity(field_type):
                    is_identity = True
                    is_generated = Generated.is_generated(field_type)
                    field_type = _get_wrapped_type(field_type)
                elif _is_list(field_type):
                    raise UnsupportedMapping(f"List fields are not supported - {node_type.__name__}.{field_name}")
                elif _is_field_nullable(field_type):
                    field_type = _get_wrapped_type(field_type)
                    field_nullable = True
                else:
                    raise UnsupportedMapping(f"Unhandled Generic type - {field_type}")

            if _is_entity(field_type):
                raise UnsupportedMapping(f"Nested entities are not supported - {node_type.__name__}.{field_name}")
            if _is_value_object(field_type):
                node_children.append(parse_node(field_type, field_name, field_nullable))
                continue

            node_children.append(FieldNode(field_name, field_type, field_nullable, [], is_identity, is_generated))

        if issubclass(node_type, Entity):
            return EntityNode(name, node_type, nullable, node_children)
        return ValueObjectNode(name, node_type, nullable, node_children)

    root_node = parse_node(root, inflection.underscore(root.__name__), False)
    return AbstractEntityTree(root_node)
