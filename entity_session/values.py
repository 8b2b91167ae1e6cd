import enum
import typing
from datetime import date, datetime, time
from decimal import Decimal
from functools import singledispatch

import attr

from entity_session.exceptions import ValueConversionError


class ValueKind(enum.Enum):
    NULL = "NULL"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    TEXT = "TEXT"
    BOOLEAN = "BOOLEAN"
    BYTES = "BYTES"
    DATETIME = "DATETIME"
    DATE = "DATE"
    TIME = "TIME"


@attr.s(auto_attribs=True, frozen=True)
class Variant:
    """A single column value tagged with its kind.

    Used for keys, query parameters and generic result rows. Build one with
    ``Variant.of(value)``; the typed accessors raise ``ValueConversionError``
    instead of silently casting.
    """

    kind: ValueKind
    value: typing.Any = None

    @classmethod
    def of(cls, value: typing.Any) -> "Variant":
        return to_variant(value)

    @classmethod
    def null(cls) -> "Variant":
        return cls(ValueKind.NULL)

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    def as_int(self) -> typing.Optional[int]:
        if self.is_null:
            return None
        if self.kind in (ValueKind.INTEGER, ValueKind.BOOLEAN):
            return int(self.value)
        if self.kind is ValueKind.FLOAT and self.value.is_integer():
            return int(self.value)
        if self.kind is ValueKind.TEXT:
            try:
                return int(self.value)
            except ValueError:
                pass
        raise self._conversion_error("int")

    def as_float(self) -> typing.Optional[float]:
        if self.is_null:
            return None
        if self.kind in (ValueKind.INTEGER, ValueKind.FLOAT, ValueKind.BOOLEAN):
            return float(self.value)
        if self.kind is ValueKind.TEXT:
            try:
                return float(self.value)
            except ValueError:
                pass
        raise self._conversion_error("float")

    def as_text(self) -> typing.Optional[str]:
        if self.is_null:
            return None
        if self.kind is ValueKind.BYTES:
            raise self._conversion_error("str")
        if self.kind in (ValueKind.DATETIME, ValueKind.DATE, ValueKind.TIME):
            return self.value.isoformat()
        return str(self.value)

    def as_bool(self) -> typing.Optional[bool]:
        if self.is_null:
            return None
        if self.kind is ValueKind.BOOLEAN:
            return self.value
        if self.kind is ValueKind.INTEGER and self.value in (0, 1):
            return bool(self.value)
        raise self._conversion_error("bool")

    def as_bytes(self) -> typing.Optional[bytes]:
        if self.is_null:
            return None
        if self.kind is ValueKind.BYTES:
            return self.value
        if self.kind is ValueKind.TEXT:
            return self.value.encode("utf-8")
        raise self._conversion_error("bytes")

    def as_datetime(self) -> typing.Optional[datetime]:
        if self.is_null:
            return None
        if self.kind is ValueKind.DATETIME:
            return self.value
        if self.kind is ValueKind.DATE:
            return datetime.combine(self.value, time())
        if self.kind is ValueKind.TEXT:
            try:
                return datetime.fromisoformat(self.value)
            except ValueError:
                pass
        raise self._conversion_error("datetime")

    def _conversion_error(self, target: str) -> ValueConversionError:
        return ValueConversionError(f"Cannot convert {self.kind.value} value {self.value!r} to {target}")


@singledispatch
def to_variant(value: typing.Any) -> Variant:
    raise ValueConversionError(f"Unsupported value type - {type(value).__name__}")


@to_variant.register(Variant)
def _(value: Variant) -> Variant:
    return value


@to_variant.register(type(None))
def _(value: None) -> Variant:
    return Variant.null()


@to_variant.register(bool)
def _(value: bool) -> Variant:
    return Variant(ValueKind.BOOLEAN, value)


@to_variant.register(int)
def _(value: int) -> Variant:
    return Variant(ValueKind.INTEGER, value)


@to_variant.register(float)
def _(value: float) -> Variant:
    return Variant(ValueKind.FLOAT, value)


@to_variant.register(Decimal)
def _(value: Decimal) -> Variant:
    return Variant(ValueKind.FLOAT, float(value))


@to_variant.register(str)
def _(value: str) -> Variant:
    return Variant(ValueKind.TEXT, value)


@to_variant.register(bytes)
@to_variant.register(bytearray)
@to_variant.register(memoryview)
def _(value: typing.Union[bytes, bytearray, memoryview]) -> Variant:
    return Variant(ValueKind.BYTES, bytes(value))


@to_variant.register(datetime)
def _(value: datetime) -> Variant:
    return Variant(ValueKind.DATETIME, value)


@to_variant.register(date)
def _(value: date) -> Variant:
    return Variant(ValueKind.DATE, value)


@to_variant.register(time)
def _(value: time) -> Variant:
    return Variant(ValueKind.TIME, value)
