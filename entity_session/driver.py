import contextlib
import logging
import typing
from datetime import datetime
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection as SaConnection, CursorResult, Engine
from sqlalchemy.exc import SQLAlchemyError

from entity_session.dialect import Dialect
from entity_session.exceptions import DataAccessError
from entity_session.types import to_bound_variant
from entity_session.values import Variant, ValueKind, to_variant


logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _translate_errors(sql: typing.Optional[str] = None) -> typing.Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        message = str(exc) if sql is None else f"{exc} [SQL: {sql}]"
        raise DataAccessError(message) from exc


class DataSource:
    """Hands out pooled connections of a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self.dialect = Dialect(engine.dialect)

    @classmethod
    def from_url(cls, url: str, **engine_options: typing.Any) -> "DataSource":
        return cls(create_engine(url, **engine_options))

    @property
    def engine(self) -> Engine:
        return self._engine

    def get_connection(self) -> "Connection":
        with _translate_errors():
            sa_connection = self._engine.connect().execution_options(isolation_level="AUTOCOMMIT")
        return Connection(sa_connection, self.dialect)

    def dispose(self) -> None:
        self._engine.dispose()


class Connection:
    def __init__(self, sa_connection: SaConnection, dialect: Dialect) -> None:
        self._sa_connection = sa_connection
        self.dialect = dialect

    @property
    def closed(self) -> bool:
        return self._sa_connection.closed

    def create_statement(self) -> "Statement":
        return Statement(self)

    def prepare_statement(self, sql: str) -> "PreparedStatement":
        return PreparedStatement(self, sql)

    def close(self) -> None:
        with _translate_errors():
            self._sa_connection.close()

    def _execute(self, sql: str, parameters: typing.Sequence[typing.Any] = ()) -> CursorResult:
        if self.closed:
            raise DataAccessError("Connection is closed")
        logger.debug("Executing %s with %r", sql, parameters)
        with _translate_errors(sql):
            if parameters:
                return self._sa_connection.exec_driver_sql(sql, tuple(parameters))
            return self._sa_connection.exec_driver_sql(sql)


class Statement:
    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def execute_query(self, sql: str) -> "ResultSet":
        self._check_closed()
        return ResultSet(self._connection._execute(sql))

    def execute_update(self, sql: str) -> int:
        self._check_closed()
        result = self._connection._execute(sql)
        try:
            return result.rowcount
        finally:
            result.close()

    def close(self) -> None:
        self._closed = True

    def _check_closed(self) -> None:
        if self._closed:
            raise DataAccessError("Statement is closed")

    def __enter__(self) -> "Statement":
        return self

    def __exit__(self, *exc_info: typing.Any) -> None:
        self.close()


class PreparedStatement(Statement):
    def __init__(self, connection: Connection, sql: str) -> None:
        super().__init__(connection)
        self.sql = sql
        self._parameters: typing.Dict[int, typing.Any] = {}

    def set_variant(self, parameter_index: int, value: Variant) -> None:
        if parameter_index < 1:
            raise DataAccessError(f"Parameter index must be 1-based, got {parameter_index}")
        self._parameters[parameter_index] = self._connection.dialect.to_driver(to_bound_variant(value).value)

    def set_int(self, parameter_index: int, value: int) -> None:
        self.set_variant(parameter_index, Variant(ValueKind.INTEGER, value))

    def set_float(self, parameter_index: int, value: float) -> None:
        self.set_variant(parameter_index, Variant(ValueKind.FLOAT, value))

    def set_string(self, parameter_index: int, value: str) -> None:
        self.set_variant(parameter_index, Variant(ValueKind.TEXT, value))

    def set_boolean(self, parameter_index: int, value: bool) -> None:
        self.set_variant(parameter_index, Variant(ValueKind.BOOLEAN, value))

    def set_bytes(self, parameter_index: int, value: bytes) -> None:
        self.set_variant(parameter_index, Variant(ValueKind.BYTES, value))

    def set_null(self, parameter_index: int) -> None:
        self.set_variant(parameter_index, Variant.null())

    def clear_parameters(self) -> None:
        self._parameters.clear()

    def execute_query(self) -> "ResultSet":  # type: ignore[override]
        self._check_closed()
        return ResultSet(self._connection._execute(self.sql, self._bound_parameters()))

    def execute_update(self) -> int:  # type: ignore[override]
        self._check_closed()
        result = self._connection._execute(self.sql, self._bound_parameters())
        try:
            return result.rowcount
        finally:
            result.close()

    def execute_update_returning_key(self) -> Variant:
        self._check_closed()
        result = self._connection._execute(self.sql, self._bound_parameters())
        try:
            with _translate_errors(self.sql):
                key = result.scalar() if result.returns_rows else result.lastrowid
        finally:
            result.close()
        if key is None:
            raise DataAccessError(f"No generated key returned [SQL: {self.sql}]")
        return to_variant(key)

    def _bound_parameters(self) -> typing.List[typing.Any]:
        if not self._parameters:
            return []
        count = max(self._parameters)
        missing = [index for index in range(1, count + 1) if index not in self._parameters]
        if missing:
            raise DataAccessError(f"Parameters {missing} are not bound [SQL: {self.sql}]")
        return [self._parameters[index] for index in range(1, count + 1)]


class ResultSet:
    def __init__(self, result: CursorResult) -> None:
        self._result = result
        self._row: typing.Optional[typing.Sequence[typing.Any]] = None
        self._last_was_null = False
        self._closed = False

    @property
    def column_count(self) -> int:
        return len(self._result.keys())

    def next(self) -> bool:
        with _translate_errors():
            self._row = self._result.fetchone()
        return self._row is not None

    def get_object(self, column_index: int) -> typing.Any:
        if self._row is None:
            raise DataAccessError("No current row")
        if not 1 <= column_index <= len(self._row):
            raise DataAccessError(f"Column index {column_index} out of range")
        value = self._row[column_index - 1]
        self._last_was_null = value is None
        return value

    def get_variant(self, column_index: int) -> Variant:
        value = self.get_object(column_index)
        # NUMERIC values read as FLOAT, not as their TEXT storage form
        if isinstance(value, Decimal):
            return to_variant(value)
        return to_bound_variant(value)

    def get_int(self, column_index: int) -> typing.Optional[int]:
        return self.get_variant(column_index).as_int()

    def get_float(self, column_index: int) -> typing.Optional[float]:
        return self.get_variant(column_index).as_float()

    def get_string(self, column_index: int) -> typing.Optional[str]:
        return self.get_variant(column_index).as_text()

    def get_boolean(self, column_index: int) -> typing.Optional[bool]:
        return self.get_variant(column_index).as_bool()

    def get_bytes(self, column_index: int) -> typing.Optional[bytes]:
        return self.get_variant(column_index).as_bytes()

    def get_datetime(self, column_index: int) -> typing.Optional[datetime]:
        return self.get_variant(column_index).as_datetime()

    def was_null(self) -> bool:
        return self._last_was_null

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._result.close()

    def __enter__(self) -> "ResultSet":
        return self

    def __exit__(self, *exc_info: typing.Any) -> None:
        self.close()
