import threading
import typing

import pytest

from entity_session import EntityMetaData, IllegalStateError, SessionFactory
from entity_session.dialect import Dialect
from entity_session.tests.helpers import User


def test_open_session_registers_session(session_factory: SessionFactory) -> None:
    first = session_factory.open_session()
    second = session_factory.open_session()

    assert session_factory.active_sessions == (first, second)
    assert first.get_session_factory() is session_factory

    first.close()

    assert session_factory.active_sessions == (second,)
    second.close()


def test_closed_factory_rejects_new_sessions(session_factory: SessionFactory) -> None:
    session_factory.close()

    assert session_factory.is_closed()
    with pytest.raises(IllegalStateError):
        session_factory.open_session()


def test_close_twice_fails(session_factory: SessionFactory) -> None:
    session_factory.close()

    with pytest.raises(IllegalStateError):
        session_factory.close()


def test_sessions_outlive_factory(session_factory: SessionFactory) -> None:
    session = session_factory.open_session()
    session_factory.close()

    key = session.save(User(id=0, name="Ann"))

    assert session.get("User", key) == User(id=key, name="Ann")
    session.close()


def test_session_closed_notification_is_idempotent(session_factory: SessionFactory) -> None:
    session = session_factory.open_session()
    session.close()

    session_factory._session_closed(session)

    assert session_factory.active_sessions == ()


def test_context_manager_closes_factory(session_factory: SessionFactory) -> None:
    with session_factory as factory:
        assert not factory.is_closed()

    assert session_factory.is_closed()


def test_factory_seals_metadata(session_factory: SessionFactory, metadata: EntityMetaData) -> None:
    assert metadata.sealed


class _FakeConnection:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _FakePool:
    def __init__(self) -> None:
        self.connections: typing.List[_FakeConnection] = []
        self._lock = threading.Lock()

    def get_connection(self) -> _FakeConnection:
        connection = _FakeConnection()
        with self._lock:
            self.connections.append(connection)
        return connection


def test_tracks_sessions_opened_and_closed_concurrently() -> None:
    from sqlalchemy.dialects import sqlite

    pool = _FakePool()
    factory = SessionFactory(EntityMetaData(User), Dialect(sqlite.dialect()), pool)
    kept = []
    kept_lock = threading.Lock()

    def worker(index: int) -> None:
        for iteration in range(50):
            session = factory.open_session()
            if (index + iteration) % 2:
                session.close()
            else:
                with kept_lock:
                    kept.append(session)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(pool.connections) == 400
    assert sorted(map(id, factory.active_sessions)) == sorted(map(id, kept))
    assert sum(connection.closed for connection in pool.connections) == 400 - len(kept)
