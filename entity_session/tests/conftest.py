import typing
from pathlib import Path

import pytest
from _pytest.config.argparsing import Parser
from _pytest.fixtures import SubRequest
from sqlalchemy import Boolean, Column, Float, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine, create_engine

from entity_session import DataSource, EntityMetaData, Session, SessionFactory
from entity_session.tests.helpers import Customer, Tag, User


def pytest_addoption(parser: Parser) -> None:
    parser.addoption("--database-url", action="store", default=None)


@pytest.fixture()
def engine(request: SubRequest, tmp_path: Path) -> typing.Generator[Engine, None, None]:
    connection_url = request.config.getoption("--database-url")
    if connection_url:
        engine = create_engine(connection_url)
    else:
        engine = create_engine(
            f"sqlite:///{tmp_path / 'entity_session.db'}", connect_args={"check_same_thread": False}
        )
    yield engine
    engine.dispose()


@pytest.fixture()
def tables(engine: Engine) -> typing.Generator[MetaData, None, None]:
    sa_metadata = MetaData()
    Table(
        "user",
        sa_metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False),
    )
    Table(
        "customers",
        sa_metadata,
        Column("code", String(32), primary_key=True),
        Column("name", String(255), nullable=False),
        Column("balance", Float, nullable=False),
        Column("active", Boolean, nullable=False),
        Column("address_street", String(255), nullable=True),
        Column("address_city", String(255), nullable=True),
    )
    Table("tags", sa_metadata, Column("label", String(64), primary_key=True))
    sa_metadata.drop_all(engine)
    sa_metadata.create_all(engine)
    yield sa_metadata
    sa_metadata.drop_all(engine)


@pytest.fixture()
def data_source(engine: Engine, tables: MetaData) -> DataSource:
    return DataSource(engine)


@pytest.fixture()
def metadata() -> EntityMetaData:
    return EntityMetaData(User, Customer, Tag)


@pytest.fixture()
def session_factory(metadata: EntityMetaData, data_source: DataSource) -> SessionFactory:
    return SessionFactory(metadata, data_source.dialect, data_source)


@pytest.fixture()
def session(session_factory: SessionFactory) -> typing.Generator[Session, None, None]:
    session = session_factory.open_session()
    yield session
    if session.is_open():
        session.close()
