import re
import typing

import attr

from entity_session.dialect import Dialect
from entity_session.driver import PreparedStatement
from entity_session.exceptions import (
    MappingError,
    QueryParseError,
    UnboundParameterError,
    UnknownParameterError,
)
from entity_session.metadata import EntityInfo, EntityMetaData
from entity_session.types import to_bound_variant
from entity_session.values import Variant


TOKEN_PATTERN = re.compile(
    r"""
    (?P<whitespace>\s+)
    |(?P<string>'(?:[^']|'')*')
    |(?P<number>\d+(?:\.\d+)?)
    |(?P<parameter>:[A-Za-z_]\w*)
    |(?P<identifier>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)
    |(?P<operator><>|!=|<=|>=|\|\||[=<>+\-*/%(),])
    """,
    re.VERBOSE,
)

KEYWORDS = frozenset(
    """
    select distinct from as where and or not is null like in between exists
    group by having order asc desc limit offset true false case when then else end
    """.split()
)
CLAUSE_KEYWORDS = frozenset({"where", "group", "having", "order", "limit", "offset"})


@attr.s(auto_attribs=True, frozen=True)
class Token:
    kind: str
    text: str

    @property
    def keyword(self) -> typing.Optional[str]:
        if self.kind == "identifier" and self.text.lower() in KEYWORDS:
            return self.text.lower()
        return None


def tokenize(query: str) -> typing.List[Token]:
    tokens = []
    position = 0
    while position < len(query):
        match = TOKEN_PATTERN.match(query, position)
        if not match:
            raise QueryParseError(f"Unexpected character {query[position]!r} at {position} in query: {query}")
        if match.lastgroup != "whitespace":
            tokens.append(Token(match.lastgroup, match.group()))
        position = match.end()
    return tokens


@attr.s(auto_attribs=True, frozen=True)
class ParsedQuery:
    hql: str
    sql: str
    entity: typing.Optional[EntityInfo]
    col_count: int
    parameters: typing.Mapping[str, typing.Tuple[int, ...]]

    def create_params(self) -> "ParameterValues":
        return ParameterValues(self.parameters)


class ParameterValues:
    def __init__(self, parameters: typing.Mapping[str, typing.Tuple[int, ...]]) -> None:
        self._parameters = parameters
        self._values: typing.Dict[str, Variant] = {}

    def set_parameter(self, name: str, value: typing.Any) -> None:
        if name not in self._parameters:
            raise UnknownParameterError(f"Parameter {name} is not used in query")
        self._values[name] = to_bound_variant(value)

    def check_all_parameters_set(self) -> None:
        unbound = [name for name in self._parameters if name not in self._values]
        if unbound:
            raise UnboundParameterError(f"Parameters not set: {', '.join(unbound)}")

    def apply_params(self, statement: PreparedStatement) -> None:
        for name, positions in self._parameters.items():
            for position in positions:
                statement.set_variant(position, self._values[name])


class QueryParser:
    """Translates an entity query into SQL over the mapped table and columns.

    Supported form::

        [SELECT [DISTINCT] <items>] FROM <Entity> [[AS] <alias>] [WHERE ...] [GROUP BY ...]
        [HAVING ...] [ORDER BY ...] [LIMIT n [OFFSET m]]

    Properties are referenced as ``alias.property`` or bare ``property``; embedded
    value object fields as ``alias.value_object.field``. ``:name`` declares a parameter.
    """

    def __init__(self, metadata: EntityMetaData, query: str) -> None:
        self._metadata = metadata
        self._query = query
        self._tokens = tokenize(query)

    def make_sql(self, dialect: Dialect) -> ParsedQuery:
        from_index = self._find_from()
        select_tokens = self._tokens[:from_index]
        entity, alias, rest_index = self._parse_from(from_index)
        table_alias = alias or entity.table_name
        names = {entity.name, alias} - {None}

        parameters: typing.Dict[str, typing.List[int]] = {}
        column_aliases: typing.Set[str] = set()
        if self._selects_entity(select_tokens, names):
            select_sql = ", ".join(
                f"{dialect.quote(table_alias)}.{dialect.quote(prop.column_name)}" for prop in entity.properties
            )
            target: typing.Optional[EntityInfo] = entity
            col_count = len(entity.properties)
            if select_tokens and select_tokens[1].keyword == "distinct":
                select_sql = f"DISTINCT {select_sql}"
        else:
            items = select_tokens[1:]
            select_sql = self._translate(items, entity, table_alias, names, dialect, parameters, column_aliases)
            target = None
            col_count = _count_items(items)

        sql = f"SELECT {select_sql} FROM {dialect.quote(entity.table_name)}"
        if alias:
            sql += f" AS {dialect.quote(alias)}"
        rest = self._tokens[rest_index:]
        if rest:
            sql += " " + self._translate(rest, entity, table_alias, names, dialect, parameters, column_aliases)

        return ParsedQuery(
            hql=self._query,
            sql=sql,
            entity=target,
            col_count=col_count,
            parameters={name: tuple(positions) for name, positions in parameters.items()},
        )

    def _find_from(self) -> int:
        depth = 0
        for index, token in enumerate(self._tokens):
            if token.text == "(":
                depth += 1
            elif token.text == ")":
                depth -= 1
            elif depth == 0 and token.keyword == "from":
                if index and self._tokens[0].keyword != "select":
                    raise QueryParseError(f"Query must start with SELECT or FROM: {self._query}")
                return index
        raise QueryParseError(f"No FROM clause in query: {self._query}")

    def _parse_from(self, from_index: int) -> typing.Tuple[EntityInfo, typing.Optional[str], int]:
        index = from_index + 1
        if index >= len(self._tokens) or self._tokens[index].kind != "identifier":
            raise QueryParseError(f"Entity name expected after FROM: {self._query}")
        entity_name = self._tokens[index].text
        try:
            entity = self._metadata.find_entity(entity_name)
        except MappingError as exc:
            raise QueryParseError(f"Unknown entity {entity_name} in query: {self._query}") from exc
        index += 1

        alias = None
        explicit_as = index < len(self._tokens) and self._tokens[index].keyword == "as"
        if explicit_as:
            index += 1
        if index < len(self._tokens) and self._tokens[index].kind == "identifier" and not self._tokens[index].keyword:
            alias = self._tokens[index].text
            if "." in alias:
                raise QueryParseError(f"Invalid alias {alias}: {self._query}")
            index += 1
        elif explicit_as:
            raise QueryParseError(f"Alias expected after AS: {self._query}")
        if index < len(self._tokens) and self._tokens[index].keyword not in CLAUSE_KEYWORDS:
            raise QueryParseError(f"Unexpected {self._tokens[index].text!r} in query: {self._query}")
        return entity, alias, index

    @staticmethod
    def _selects_entity(select_tokens: typing.List[Token], names: typing.Set[str]) -> bool:
        if not select_tokens:
            return True
        items = select_tokens[1:]
        if items and items[0].keyword == "distinct":
            items = items[1:]
        return len(items) == 1 and items[0].kind == "identifier" and items[0].text in names

    def _translate(
        self,
        tokens: typing.List[Token],
        entity: EntityInfo,
        table_alias: str,
        names: typing.Set[str],
        dialect: Dialect,
        parameters: typing.Dict[str, typing.List[int]],
        column_aliases: typing.Set[str],
    ) -> str:
        parts = []
        depth = 0
        for index, token in enumerate(tokens):
            if token.text == "(":
                depth += 1
            elif token.text == ")":
                depth -= 1
            follows_as = index > 0 and tokens[index - 1].keyword == "as"
            if token.kind == "parameter":
                position = sum(len(positions) for positions in parameters.values()) + 1
                parameters.setdefault(token.text[1:], []).append(position)
                parts.append(dialect.placeholder)
            elif token.kind == "identifier" and not token.keyword and follows_as and depth > 0:
                # type name of CAST(x AS type)
                parts.append(token.text)
            elif token.kind == "identifier" and not token.keyword and follows_as:
                if "." in token.text:
                    raise QueryParseError(f"Invalid column alias {token.text}: {self._query}")
                column_aliases.add(token.text)
                parts.append(dialect.quote(token.text))
            elif token.kind == "identifier" and token.text in column_aliases:
                parts.append(dialect.quote(token.text))
            elif token.kind == "identifier" and not token.keyword:
                followed_by_call = index + 1 < len(tokens) and tokens[index + 1].text == "("
                if followed_by_call and "." not in token.text:
                    parts.append(token.text)
                else:
                    parts.append(self._column(token.text, entity, table_alias, names, dialect))
            elif token.keyword:
                parts.append(token.text.upper())
            elif token.kind in ("string", "operator"):
                parts.append(dialect.escape_percent(token.text))
            else:
                parts.append(token.text)
        return " ".join(parts)

    def _column(
        self, identifier: str, entity: EntityInfo, table_alias: str, names: typing.Set[str], dialect: Dialect
    ) -> str:
        head, _, tail = identifier.partition(".")
        dotted_path = tail if head in names and tail else identifier
        prop = entity.find_property(dotted_path)
        if prop is None:
            raise QueryParseError(f"Unknown property {identifier} of {entity.name} in query: {self._query}")
        return f"{dialect.quote(table_alias)}.{dialect.quote(prop.column_name)}"


def _count_items(tokens: typing.List[Token]) -> int:
    if not tokens:
        raise QueryParseError("Empty SELECT list")
    depth = 0
    count = 1
    for token in tokens:
        if token.text == "(":
            depth += 1
        elif token.text == ")":
            depth -= 1
        elif token.text == "," and depth == 0:
            count += 1
    return count
