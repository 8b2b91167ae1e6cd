import abc
import inspect
import typing

import attr


class EntityWithoutIdentity(TypeError):
    pass


class EntityWithMultipleIdentities(TypeError):
    pass


class ValueObjectWithIdentity(TypeError):
    pass


class EntityNestedInValueObject(TypeError):
    pass


T = typing.TypeVar("T")


class Identity(typing.Generic[T]):
    @classmethod
    def is_identity(cls, field_type: typing.Type) -> bool:
        origin = getattr(field_type, "__origin__", None)
        return isinstance(origin, type) and issubclass(origin, Identity)


class Generated(Identity[T]):
    """Identity assigned by the database on insert."""

    @classmethod
    def is_generated(cls, field_type: typing.Type) -> bool:
        return getattr(field_type, "__origin__", None) is Generated


class EntityMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if name == "Entity":
            return cls
        attr_cls = attr.s(auto_attribs=True)(cls)
        identities = [field for field in attr.fields(attr_cls) if Identity.is_identity(field.type)]
        if not identities:
            raise EntityWithoutIdentity(name)
        if len(identities) > 1:
            raise EntityWithMultipleIdentities(name)
        return attr_cls


class Entity(metaclass=EntityMeta):
    pass


class ValueObjectMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if name == "ValueObject":
            return cls
        attr_cls = attr.s(auto_attribs=True)(cls)
        fields = attr.fields(attr_cls)
        if any(Identity.is_identity(field.type) for field in fields):
            raise ValueObjectWithIdentity(name)
        if any(_is_nested_entity(field.type) for field in fields):
            raise EntityNestedInValueObject(name)
        return attr_cls


def _is_nested_entity(field_type: typing.Type) -> bool:
    if inspect.isclass(field_type):
        return issubclass(field_type, Entity)
    if getattr(field_type, "__origin__", None) is typing.Union:
        return any(inspect.isclass(arg) and issubclass(arg, Entity) for arg in field_type.__args__)
    return False


class ValueObject(metaclass=ValueObjectMeta):
    pass


EntityOrVoType = typing.Union[typing.Type[Entity], typing.Type[ValueObject]]
