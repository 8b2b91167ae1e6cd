import enum
import typing
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from functools import singledispatch

from entity_session.exceptions import ValueConversionError
from entity_session.values import Variant, to_variant


@singledispatch
def to_storage(argument: typing.Any) -> typing.Any:
    return argument


@to_storage.register(uuid.UUID)
def _(argument: uuid.UUID) -> str:
    return str(argument)


@to_storage.register(Decimal)
def _(argument: Decimal) -> str:
    return str(argument)


@to_storage.register(enum.Enum)
def _(argument: enum.Enum) -> typing.Any:
    return argument.value


def _to_datetime(argument: typing.Any) -> datetime:
    if isinstance(argument, datetime):
        return argument
    return datetime.fromisoformat(argument)


def _to_date(argument: typing.Any) -> date:
    if isinstance(argument, datetime):
        return argument.date()
    if isinstance(argument, date):
        return argument
    return date.fromisoformat(argument)


def _to_time(argument: typing.Any) -> time:
    if isinstance(argument, time):
        return argument
    return time.fromisoformat(argument)


def _to_bytes(argument: typing.Any) -> bytes:
    return bytes(argument)


mapping: typing.Dict[typing.Type, typing.Callable[[typing.Any], typing.Any]] = {
    uuid.UUID: uuid.UUID,
    Decimal: lambda argument: Decimal(str(argument)),
    bool: bool,
    int: int,
    float: float,
    datetime: _to_datetime,
    date: _to_date,
    time: _to_time,
    bytes: _to_bytes,
}


def from_storage(argument: typing.Any, field_type: typing.Type) -> typing.Any:
    if argument is None:
        return None
    if isinstance(argument, Variant):
        argument = argument.value
        if argument is None:
            return None

    if isinstance(field_type, type) and issubclass(field_type, enum.Enum):
        converter: typing.Callable[[typing.Any], typing.Any] = field_type
    else:
        try:
            converter = mapping[field_type]
        except KeyError:
            return argument

    try:
        return converter(argument)
    except (TypeError, ValueError) as exc:
        raise ValueConversionError(f"Cannot convert {argument!r} to {field_type.__name__}") from exc


def to_bound_variant(argument: typing.Any) -> Variant:
    return to_variant(to_storage(argument))
