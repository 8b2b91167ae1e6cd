import inspect
import typing

import attr
import inflection

from entity_session import abstract_entity_tree
from entity_session.abstract_entity_tree import (
    AbstractEntityTree,
    EntityNode,
    FieldNode,
    ValueObjectNode,
    Visitor,
)
from entity_session.dialect import Dialect
from entity_session.driver import PreparedStatement, ResultSet
from entity_session.entity import Entity
from entity_session.exceptions import MappingError
from entity_session.types import from_storage, to_bound_variant


@attr.s(auto_attribs=True, frozen=True)
class PropertyInfo:
    name: str
    column_name: str
    type: typing.Type
    path: typing.Tuple[str, ...]
    nullable: bool = False
    is_key: bool = False
    is_generated: bool = False

    @property
    def dotted_path(self) -> str:
        return ".".join(self.path)

    def get_value(self, entity: Entity) -> typing.Any:
        current = entity
        for name in self.path:
            if current is None:  # optional value object
                return None
            current = getattr(current, name)
        return current

    def set_value(self, entity: Entity, value: typing.Any) -> None:
        owner = entity
        for name in self.path[:-1]:
            owner = getattr(owner, name)
        setattr(owner, self.path[-1], value)

    def read_func(self, result_set: ResultSet, column_index: int) -> typing.Any:
        return from_storage(result_set.get_object(column_index), self.type)

    def write_func(self, entity: Entity, statement: PreparedStatement, parameter_index: int) -> None:
        statement.set_variant(parameter_index, to_bound_variant(self.get_value(entity)))


@attr.s(auto_attribs=True, frozen=True)
class EntityInfo:
    name: str
    type: typing.Type[Entity]
    table_name: str
    properties: typing.Tuple[PropertyInfo, ...]
    tree: AbstractEntityTree = attr.ib(eq=False, repr=False)

    @property
    def key_property(self) -> PropertyInfo:
        return next(prop for prop in self.properties if prop.is_key)

    @property
    def properties_except_key(self) -> typing.Tuple[PropertyInfo, ...]:
        return tuple(prop for prop in self.properties if not prop.is_key)

    def find_property(self, dotted_path: str) -> typing.Optional[PropertyInfo]:
        for prop in self.properties:
            if prop.dotted_path == dotted_path:
                return prop
        return None

    def create_entity(self) -> Entity:
        # fields are filled in by hydration, __init__ would demand them upfront
        return self.type.__new__(self.type)

    def is_key_set(self, entity: Entity) -> bool:
        value = self.get_key(entity)
        return value is not None and (type(value), value) not in ((int, 0), (str, ""))

    def get_key(self, entity: Entity) -> typing.Any:
        return self.key_property.get_value(entity)

    def set_key(self, entity: Entity, value: typing.Any) -> None:
        key_property = self.key_property
        key_property.set_value(entity, from_storage(value, key_property.type))


class PropertyCollectingVisitor(Visitor):
    """Flattens an entity tree into columns, embedding value objects with a prefix."""

    def __init__(self) -> None:
        self._stacked_vo: typing.List[ValueObjectNode] = []
        self.properties: typing.List[PropertyInfo] = []

    @property
    def _prefix(self) -> str:
        if not self._stacked_vo:
            return ""
        return "_".join(vo.name for vo in self._stacked_vo) + "_"

    def visit_field(self, field: FieldNode) -> None:
        path = tuple(vo.name for vo in self._stacked_vo) + (field.name,)
        nullable = field.nullable or any(vo.nullable for vo in self._stacked_vo)
        self.properties.append(
            PropertyInfo(
                name=field.name,
                column_name=f"{self._prefix}{field.name}",
                type=field.type,
                path=path,
                nullable=nullable,
                is_key=field.is_identity,
                is_generated=field.is_generated,
            )
        )

    def visit_value_object(self, value_object: ValueObjectNode) -> None:
        self._stacked_vo.append(value_object)

    def leave_value_object(self, value_object: ValueObjectNode) -> None:
        self._stacked_vo.pop()


class HydratingVisitor(Visitor):
    """Rebuilds top-level field values (value objects included) from column values keyed by path."""

    def __init__(self, values: typing.Mapping[typing.Tuple[str, ...], typing.Any]) -> None:
        self._values = values
        self._path: typing.List[str] = []
        self._dicts_stack: typing.List[dict] = []
        self._result: typing.Dict[str, typing.Any] = {}

    @property
    def result(self) -> typing.Dict[str, typing.Any]:
        return self._result

    def visit_field(self, field: FieldNode) -> None:
        self._dicts_stack[-1][field.name] = self._values[tuple(self._path) + (field.name,)]

    def visit_entity(self, entity: EntityNode) -> None:
        self._dicts_stack.append({})

    def leave_entity(self, entity: EntityNode) -> None:
        self._result = self._dicts_stack.pop()

    def visit_value_object(self, value_object: ValueObjectNode) -> None:
        self._path.append(value_object.name)
        self._dicts_stack.append({})

    def leave_value_object(self, value_object: ValueObjectNode) -> None:
        self._path.pop()
        vo_dict = self._dicts_stack.pop()
        if value_object.nullable and all(value is None for value in vo_dict.values()):
            # an absent value object and one with all fields None look the same in a row
            instance = None
        else:
            instance = value_object.type(**vo_dict)
        self._dicts_stack[-1][value_object.name] = instance


def _table_name(entity_cls: typing.Type[Entity]) -> str:
    return getattr(entity_cls, "__tablename__", None) or inflection.pluralize(
        inflection.underscore(entity_cls.__name__)
    )


def build_entity_info(entity_cls: typing.Type[Entity]) -> EntityInfo:
    tree = abstract_entity_tree.build(entity_cls)
    visitor = PropertyCollectingVisitor()
    visitor.traverse_from(tree.root)
    return EntityInfo(
        name=entity_cls.__name__,
        type=entity_cls,
        table_name=_table_name(entity_cls),
        properties=tuple(visitor.properties),
        tree=tree,
    )


class EntityMetaData:
    """Closed registry of mapped entities, plus column binding and SQL generation for them."""

    def __init__(self, *entity_classes: typing.Type[Entity]) -> None:
        self._entities: typing.Dict[str, EntityInfo] = {}
        self._entities_by_type: typing.Dict[typing.Type[Entity], EntityInfo] = {}
        self._sql_cache: typing.Dict[typing.Tuple[str, str, str], str] = {}
        self._sealed = False
        for entity_cls in entity_classes:
            self.register(entity_cls)

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def entities(self) -> typing.Tuple[EntityInfo, ...]:
        return tuple(self._entities.values())

    def seal(self) -> None:
        self._sealed = True

    def register(self, entity_cls: typing.Type[Entity]) -> EntityInfo:
        if self._sealed:
            raise MappingError(f"Cannot register {entity_cls!r}: metadata is already in use")
        if not (inspect.isclass(entity_cls) and issubclass(entity_cls, Entity)):
            raise MappingError(f"{entity_cls!r} is not an Entity")
        if entity_cls in self._entities_by_type:
            return self._entities_by_type[entity_cls]

        info = build_entity_info(entity_cls)
        if info.name in self._entities:
            raise MappingError(f"Entity name {info.name} is already registered")
        self._entities[info.name] = info
        self._entities_by_type[entity_cls] = info
        return info

    def find_entity(self, entity: typing.Union[str, typing.Type[Entity]]) -> EntityInfo:
        try:
            if isinstance(entity, str):
                return self._entities[entity]
            return self._entities_by_type[entity]
        except KeyError:
            raise MappingError(f"Entity {entity!r} is not registered")

    def find_entity_for_object(self, entity: Entity) -> EntityInfo:
        try:
            return self._entities_by_type[type(entity)]
        except KeyError:
            raise MappingError(f"{type(entity).__name__} is not a registered entity")

    def read_all_columns(self, entity: Entity, result_set: ResultSet, column_index: int) -> int:
        info = self.find_entity_for_object(entity)
        values = {}
        for prop in info.properties:
            values[prop.path] = prop.read_func(result_set, column_index)
            column_index += 1

        visitor = HydratingVisitor(values)
        visitor.traverse_from(info.tree.root)
        for name, value in visitor.result.items():
            setattr(entity, name, value)
        return column_index

    def write_all_columns(self, entity: Entity, statement: PreparedStatement, parameter_index: int) -> int:
        info = self.find_entity_for_object(entity)
        return self._write_columns(entity, info.properties, statement, parameter_index)

    def write_all_columns_except_key(self, entity: Entity, statement: PreparedStatement, parameter_index: int) -> int:
        info = self.find_entity_for_object(entity)
        return self._write_columns(entity, info.properties_except_key, statement, parameter_index)

    @staticmethod
    def _write_columns(
        entity: Entity, properties: typing.Iterable[PropertyInfo], statement: PreparedStatement, parameter_index: int
    ) -> int:
        for prop in properties:
            prop.write_func(entity, statement, parameter_index)
            parameter_index += 1
        return parameter_index

    def generate_find_by_pk_for_entity(self, info: EntityInfo, dialect: Dialect) -> str:
        def generate() -> str:
            columns = _column_list(info.properties, dialect)
            return (
                f"SELECT {columns} FROM {dialect.quote(info.table_name)} "
                f"WHERE {dialect.quote(info.key_property.column_name)}={dialect.placeholder}"
            )

        return self._cached("find_by_pk", info, dialect, generate)

    def generate_insert_all_fields_for_entity(self, info: EntityInfo, dialect: Dialect) -> str:
        def generate() -> str:
            return _insert(info.table_name, info.properties, dialect)

        return self._cached("insert_all", info, dialect, generate)

    def generate_insert_no_key_for_entity(self, info: EntityInfo, dialect: Dialect) -> str:
        def generate() -> str:
            sql = _insert(info.table_name, info.properties_except_key, dialect)
            if dialect.uses_returning:
                sql += f" RETURNING {dialect.quote(info.key_property.column_name)}"
            return sql

        return self._cached("insert_no_key", info, dialect, generate)

    def generate_update_for_entity(self, info: EntityInfo, dialect: Dialect) -> str:
        def generate() -> str:
            if not info.properties_except_key:
                raise MappingError(f"Entity {info.name} has no columns besides its key to update")
            assignments = ", ".join(
                f"{dialect.quote(prop.column_name)}={dialect.placeholder}" for prop in info.properties_except_key
            )
            return (
                f"UPDATE {dialect.quote(info.table_name)} SET {assignments} "
                f"WHERE {dialect.quote(info.key_property.column_name)}={dialect.placeholder}"
            )

        return self._cached("update", info, dialect, generate)

    def generate_delete_for_entity(self, info: EntityInfo, dialect: Dialect) -> str:
        def generate() -> str:
            return (
                f"DELETE FROM {dialect.quote(info.table_name)} "
                f"WHERE {dialect.quote(info.key_property.column_name)}={dialect.placeholder}"
            )

        return self._cached("delete", info, dialect, generate)

    def _cached(self, kind: str, info: EntityInfo, dialect: Dialect, generate: typing.Callable[[], str]) -> str:
        cache_key = (kind, info.name, dialect.name)
        if cache_key not in self._sql_cache:
            self._sql_cache[cache_key] = generate()
        return self._sql_cache[cache_key]


def _column_list(properties: typing.Iterable[PropertyInfo], dialect: Dialect) -> str:
    return ", ".join(dialect.quote(prop.column_name) for prop in properties)


def _insert(table_name: str, properties: typing.Sequence[PropertyInfo], dialect: Dialect) -> str:
    if not properties:
        return f"INSERT INTO {dialect.quote(table_name)} DEFAULT VALUES"
    return (
        f"INSERT INTO {dialect.quote(table_name)} ({_column_list(properties, dialect)}) "
        f"VALUES ({dialect.placeholders(len(properties))})"
    )
