import typing
from datetime import date, time

from sqlalchemy.engine import Dialect as SaDialect


RETURNING_DIALECTS = frozenset({"postgresql"})
PLACEHOLDERS = {"qmark": "?", "format": "%s", "pyformat": "%s"}


class Dialect:
    """SQL flavour of the database behind a connection pool."""

    def __init__(self, sa_dialect: SaDialect) -> None:
        try:
            self.placeholder = PLACEHOLDERS[sa_dialect.paramstyle]
        except KeyError:
            raise ValueError(f"Unsupported paramstyle - {sa_dialect.paramstyle}")
        self._sa_dialect = sa_dialect

    @property
    def name(self) -> str:
        return self._sa_dialect.name

    @property
    def uses_returning(self) -> bool:
        return self.name in RETURNING_DIALECTS

    def quote(self, identifier: str) -> str:
        return self._sa_dialect.identifier_preparer.quote(identifier)

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    def escape_percent(self, text: str) -> str:
        # format/pyformat drivers read a bare % as the start of a placeholder
        if self.placeholder == "%s":
            return text.replace("%", "%%")
        return text

    def to_driver(self, value: typing.Any) -> typing.Any:
        # sqlite3's default date adapters are deprecated
        if self.name == "sqlite" and isinstance(value, (date, time)):
            return value.isoformat()
        return value

    def __repr__(self) -> str:
        return f"Dialect({self.name!r})"
