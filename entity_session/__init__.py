from entity_session.config import Settings, create_session_factory
from entity_session.dialect import Dialect
from entity_session.driver import DataSource
from entity_session.entity import Entity, Generated, Identity, ValueObject
from entity_session.exceptions import (
    DataAccessError,
    EntityNotFoundError,
    EntitySessionError,
    GeneratorRequiredError,
    IllegalStateError,
    MappingError,
    MissingKeyError,
    NonUniqueResultError,
    NotAnEntityQueryError,
    QueryParseError,
    SessionClosedError,
    UnboundParameterError,
    UnknownParameterError,
    UnsupportedMapping,
    ValueConversionError,
)
from entity_session.metadata import EntityInfo, EntityMetaData, PropertyInfo
from entity_session.session import Query, Session, SessionFactory
from entity_session.values import ValueKind, Variant

__all__ = [
    "Settings",
    "create_session_factory",
    "Dialect",
    "DataSource",
    "Entity",
    "Generated",
    "Identity",
    "ValueObject",
    "DataAccessError",
    "EntityNotFoundError",
    "EntitySessionError",
    "GeneratorRequiredError",
    "IllegalStateError",
    "MappingError",
    "MissingKeyError",
    "NonUniqueResultError",
    "NotAnEntityQueryError",
    "QueryParseError",
    "SessionClosedError",
    "UnboundParameterError",
    "UnknownParameterError",
    "UnsupportedMapping",
    "ValueConversionError",
    "EntityInfo",
    "EntityMetaData",
    "PropertyInfo",
    "Query",
    "Session",
    "SessionFactory",
    "ValueKind",
    "Variant",
]
