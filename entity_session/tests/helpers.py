import typing

from sqlalchemy import text
from sqlalchemy.engine import Engine

from entity_session import Entity, Generated, Identity, ValueObject


class User(Entity):
    __tablename__ = "user"

    id: Generated[int]
    name: str


class Address(ValueObject):
    street: str
    city: str


class Customer(Entity):
    code: Identity[str]
    name: str
    balance: float
    active: bool
    address: typing.Optional[Address] = None


def fetch_rows(engine: Engine, sql: str, **params: typing.Any) -> typing.List[typing.Tuple]:
    with engine.connect() as connection:
        return [tuple(row) for row in connection.execute(text(sql), params).fetchall()]


def execute(engine: Engine, sql: str, **params: typing.Any) -> None:
    with engine.begin() as connection:
        connection.execute(text(sql), params)


class Tag(Entity):
    label: Identity[str]
