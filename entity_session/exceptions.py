class EntitySessionError(Exception):
    pass


class IllegalStateError(EntitySessionError):
    pass


class SessionClosedError(IllegalStateError):
    pass


class EntityNotFoundError(EntitySessionError):
    pass


class MissingKeyError(EntitySessionError):
    pass


class GeneratorRequiredError(EntitySessionError):
    pass


class QueryParseError(EntitySessionError):
    pass


class UnknownParameterError(EntitySessionError):
    pass


class UnboundParameterError(EntitySessionError):
    pass


class NotAnEntityQueryError(EntitySessionError):
    pass


class NonUniqueResultError(EntitySessionError):
    pass


class DataAccessError(EntitySessionError):
    pass


class ValueConversionError(EntitySessionError):
    pass


class MappingError(EntitySessionError):
    pass


class UnsupportedMapping(MappingError):
    pass
