import logging
import threading
import typing

from entity_session.dialect import Dialect
from entity_session.driver import DataSource, PreparedStatement
from entity_session.entity import Entity
from entity_session.exceptions import (
    EntityNotFoundError,
    GeneratorRequiredError,
    IllegalStateError,
    MissingKeyError,
    NonUniqueResultError,
    NotAnEntityQueryError,
    SessionClosedError,
)
from entity_session.hql import ParsedQuery, QueryParser
from entity_session.metadata import EntityInfo, EntityMetaData
from entity_session.types import to_bound_variant
from entity_session.values import Variant


logger = logging.getLogger(__name__)

EntityRef = typing.Union[str, typing.Type[Entity]]


class SessionFactory:
    """Opens sessions against one metadata / dialect / connection pool configuration."""

    def __init__(self, metadata: EntityMetaData, dialect: Dialect, connection_pool: DataSource) -> None:
        self._closed = False
        self._metadata = metadata
        self._dialect = dialect
        self._connection_pool = connection_pool
        self._lock = threading.Lock()
        self._active_sessions: typing.List["Session"] = []
        metadata.seal()

    @property
    def metadata(self) -> EntityMetaData:
        return self._metadata

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def active_sessions(self) -> typing.Tuple["Session", ...]:
        with self._lock:
            return tuple(self._active_sessions)

    def is_closed(self) -> bool:
        return self._closed

    def open_session(self) -> "Session":
        self._check_closed()
        session = Session(self, self._metadata, self._dialect, self._connection_pool)
        with self._lock:
            self._active_sessions.append(session)
        logger.debug("Opened session %#x", id(session))
        return session

    def close(self) -> None:
        self._check_closed()
        self._closed = True
        logger.debug("Session factory closed, %d session(s) still open", len(self.active_sessions))

    def _session_closed(self, session: "Session") -> None:
        with self._lock:
            self._active_sessions = [active for active in self._active_sessions if active is not session]

    def _check_closed(self) -> None:
        if self._closed:
            raise IllegalStateError("Session factory is closed")

    def __enter__(self) -> "SessionFactory":
        return self

    def __exit__(self, *exc_info: typing.Any) -> None:
        if not self._closed:
            self.close()


class Session:
    """Unit of work bound to a single pooled connection for its whole lifetime.

    Not thread-safe: drive each session from one thread at a time.
    """

    def __init__(
        self, session_factory: SessionFactory, metadata: EntityMetaData, dialect: Dialect, connection_pool: DataSource
    ) -> None:
        self._closed = False
        self._session_factory = session_factory
        self._metadata = metadata
        self._dialect = dialect
        self._connection = connection_pool.get_connection()

    def is_open(self) -> bool:
        return not self._closed

    def is_connected(self) -> bool:
        return not self._closed

    def close(self) -> None:
        self._check_closed()
        self._closed = True
        self._session_factory._session_closed(self)
        self._connection.close()
        logger.debug("Closed session %#x", id(self))

    def get_session_factory(self) -> SessionFactory:
        self._check_closed()
        return self._session_factory

    def get_entity_name(self, obj: Entity) -> str:
        self._check_closed()
        return self._metadata.find_entity_for_object(obj).name

    def get(self, entity: EntityRef, id: typing.Any) -> typing.Optional[Entity]:
        """Return the entity with the given key, or None if there is no such row."""
        self._check_closed()
        info = self._metadata.find_entity(entity)
        return self._find_by_key(info, id, info.create_entity())

    def load(self, entity: typing.Union[EntityRef, Entity], id: typing.Any) -> Entity:
        """Like ``get`` but raises ``EntityNotFoundError`` when absent.

        When given an entity instance instead of a name or class, the row is read
        into that instance, which is also returned.
        """
        self._check_closed()
        if isinstance(entity, (str, type)):
            info = self._metadata.find_entity(entity)
            instance = info.create_entity()
        else:
            info = self._metadata.find_entity_for_object(entity)
            instance = entity

        if self._find_by_key(info, id, instance) is None:
            raise EntityNotFoundError(f"Entity {info.name} with id {id} not found")
        return instance

    def refresh(self, obj: Entity) -> None:
        """Re-read the state of the given instance from the database."""
        self._check_closed()
        info = self._metadata.find_entity_for_object(obj)
        if not info.is_key_set(obj):
            raise MissingKeyError(f"Cannot refresh entity {info.name}: no id specified")
        id = info.get_key(obj)
        if self._find_by_key(info, id, obj) is None:
            raise EntityNotFoundError(f"Entity {info.name} with id {id} not found")

    def save(self, obj: Entity) -> typing.Any:
        """Insert the instance, generating its key first if it has none. Returns the key."""
        self._check_closed()
        info = self._metadata.find_entity_for_object(obj)
        if info.is_key_set(obj):
            self._insert_all_fields(info, obj)
            return info.get_key(obj)

        if not info.key_property.is_generated:
            raise GeneratorRequiredError(f"Key of {info.name} is not set and no generator is specified")
        query = self._metadata.generate_insert_no_key_for_entity(info, self._dialect)
        with self._connection.prepare_statement(query) as stmt:
            self._metadata.write_all_columns_except_key(obj, stmt, 1)
            generated_key = stmt.execute_update_returning_key()
        info.set_key(obj, generated_key)
        return info.get_key(obj)

    def persist(self, obj: Entity) -> None:
        """Insert the instance with the key it already has."""
        self._check_closed()
        info = self._metadata.find_entity_for_object(obj)
        if not info.is_key_set(obj):
            raise MissingKeyError(f"Cannot persist entity {info.name} without key assigned")
        self._insert_all_fields(info, obj)

    def update(self, obj: Entity) -> None:
        self._check_closed()
        info = self._metadata.find_entity_for_object(obj)
        if not info.is_key_set(obj):
            raise MissingKeyError(f"Cannot update entity {info.name} without key assigned")
        if not info.properties_except_key:
            # a key-only row has nothing to change
            return
        query = self._metadata.generate_update_for_entity(info, self._dialect)
        with self._connection.prepare_statement(query) as stmt:
            key_index = self._metadata.write_all_columns_except_key(obj, stmt, 1)
            info.key_property.write_func(obj, stmt, key_index)
            stmt.execute_update()

    def remove(self, obj: Entity) -> None:
        # no key check here: deleting by an unset key matches no row
        self._check_closed()
        info = self._metadata.find_entity_for_object(obj)
        query = self._metadata.generate_delete_for_entity(info, self._dialect)
        with self._connection.prepare_statement(query) as stmt:
            info.key_property.write_func(obj, stmt, 1)
            stmt.execute_update()

    def create_query(self, query_string: str) -> "Query":
        """Create a Query for the given entity query string, parsing it right away."""
        self._check_closed()
        return Query(self, query_string)

    def _find_by_key(self, info: EntityInfo, id: typing.Any, instance: Entity) -> typing.Optional[Entity]:
        query = self._metadata.generate_find_by_pk_for_entity(info, self._dialect)
        with self._connection.prepare_statement(query) as stmt:
            stmt.set_variant(1, to_bound_variant(id))
            with stmt.execute_query() as rs:
                if not rs.next():
                    return None
                self._metadata.read_all_columns(instance, rs, 1)
                return instance

    def _insert_all_fields(self, info: EntityInfo, obj: Entity) -> None:
        query = self._metadata.generate_insert_all_fields_for_entity(info, self._dialect)
        with self._connection.prepare_statement(query) as stmt:
            self._metadata.write_all_columns(obj, stmt, 1)
            stmt.execute_update()

    def _prepare(self, sql: str) -> PreparedStatement:
        self._check_closed()
        return self._connection.prepare_statement(sql)

    def _check_closed(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info: typing.Any) -> None:
        if not self._closed:
            self.close()


class Query:
    """Parsed entity query bound to a session.

    Parameters declared as ``:name`` must all be bound with ``set_parameter``
    before execution. A query can be executed any number of times.
    """

    def __init__(self, session: Session, query_string: str) -> None:
        self._session = session
        self._query: ParsedQuery = QueryParser(session._metadata, query_string).make_sql(session._dialect)
        self._params = self._query.create_params()

    @property
    def sql(self) -> str:
        return self._query.sql

    def get_query_string(self) -> str:
        return self._query.hql

    def set_parameter(self, name: str, value: typing.Any) -> "Query":
        self._params.set_parameter(name, value)
        return self

    def unique_result(self) -> typing.Optional[Entity]:
        return self._unique(self.list(), "object")

    def unique_row(self) -> typing.Optional[typing.List[Variant]]:
        return self._unique(self.list_rows(), "row")

    def list(self) -> typing.List[Entity]:
        info = self._query.entity
        if info is None:
            raise NotAnEntityQueryError(f"No entity expected in result of query {self.get_query_string()}")
        self._params.check_all_parameters_set()

        result = []
        with self._session._prepare(self._query.sql) as stmt:
            self._params.apply_params(stmt)
            with stmt.execute_query() as rs:
                while rs.next():
                    entity = info.create_entity()
                    self._session._metadata.read_all_columns(entity, rs, 1)
                    result.append(entity)
        return result

    def list_rows(self) -> typing.List[typing.List[Variant]]:
        self._params.check_all_parameters_set()

        result = []
        with self._session._prepare(self._query.sql) as stmt:
            self._params.apply_params(stmt)
            with stmt.execute_query() as rs:
                while rs.next():
                    result.append([rs.get_variant(index) for index in range(1, self._query.col_count + 1)])
        return result

    def _unique(self, rows: typing.List[typing.Any], what: str) -> typing.Any:
        if not rows:
            return None
        if len(rows) > 1:
            raise NonUniqueResultError(f"Query returned more than one {what}: {self.get_query_string()}")
        return rows[0]
