import pytest
from sqlalchemy.engine import Engine

from entity_session import (
    DataAccessError,
    EntityNotFoundError,
    GeneratorRequiredError,
    MappingError,
    MissingKeyError,
    Session,
    SessionClosedError,
    SessionFactory,
)
from entity_session.driver import PreparedStatement, ResultSet
from entity_session.tests.helpers import Address, Customer, Tag, User, execute, fetch_rows


def test_save_assigns_generated_key(session: Session) -> None:
    user = User(id=0, name="Ann")

    key = session.save(user)

    assert key == 1
    assert user.id == 1
    assert session.get("User", key) == User(id=1, name="Ann")


def test_save_accepts_none_as_unset_key(session: Session) -> None:
    first = session.save(User(id=None, name="Ann"))
    second = session.save(User(id=None, name="Bob"))

    assert second == first + 1
    assert session.get(User, second) == User(id=second, name="Bob")


def test_save_with_key_set_inserts_all_columns(session: Session, engine: Engine) -> None:
    customer = Customer(code="C-1", name="Acme", balance=10.5, active=True)

    assert session.save(customer) == "C-1"
    assert fetch_rows(engine, "SELECT code, name FROM customers") == [("C-1", "Acme")]


def test_save_requires_generator_when_key_unset(session: Session) -> None:
    with pytest.raises(GeneratorRequiredError):
        session.save(Customer(code="", name="Acme", balance=0.0, active=False))


def test_persist_then_load_returns_equal_entity(session: Session) -> None:
    customer = Customer(code="C-1", name="Acme", balance=10.5, active=True, address=Address("Main St 1", "Springfield"))

    assert session.persist(customer) is None

    assert session.load(Customer, "C-1") == customer


def test_persist_stores_missing_optional_value_object_as_none(session: Session, engine: Engine) -> None:
    session.persist(Customer(code="C-2", name="Initech", balance=0.0, active=False))

    assert fetch_rows(engine, "SELECT address_street, address_city FROM customers") == [(None, None)]
    assert session.load("Customer", "C-2").address is None


def test_persist_requires_key(session: Session) -> None:
    with pytest.raises(MissingKeyError):
        session.persist(User(id=0, name="Ann"))


def test_persist_duplicate_key_raises_data_access_error(session: Session) -> None:
    session.persist(Customer(code="C-1", name="Acme", balance=1.0, active=True))

    with pytest.raises(DataAccessError):
        session.persist(Customer(code="C-1", name="Acme again", balance=1.0, active=True))


def test_get_returns_none_when_absent(session: Session) -> None:
    assert session.get("User", 42) is None


def test_load_raises_when_absent(session: Session) -> None:
    with pytest.raises(EntityNotFoundError):
        session.load("User", 42)


def test_load_into_existing_instance(session: Session) -> None:
    key = session.save(User(id=0, name="Ann"))
    target = User(id=0, name="")

    assert session.load(target, key) is target
    assert target == User(id=key, name="Ann")


def test_load_into_existing_instance_raises_when_absent(session: Session) -> None:
    with pytest.raises(EntityNotFoundError):
        session.load(User(id=0, name=""), 42)


def test_update_changes_non_key_fields(session: Session) -> None:
    key = session.save(User(id=0, name="Ann"))

    session.update(User(id=key, name="Ann2"))

    assert session.get("User", key) == User(id=key, name="Ann2")


def test_update_value_object_columns(session: Session) -> None:
    customer = Customer(code="C-1", name="Acme", balance=1.0, active=True)
    session.persist(customer)

    customer.address = Address("Elm St 2", "Shelbyville")
    customer.active = False
    session.update(customer)

    assert session.load(Customer, "C-1") == customer


def test_update_requires_key(session: Session) -> None:
    with pytest.raises(MissingKeyError):
        session.update(User(id=0, name="Ann"))


def test_update_of_key_only_entity_changes_nothing(session: Session, engine: Engine) -> None:
    session.persist(Tag(label="urgent"))

    session.update(Tag(label="urgent"))

    assert fetch_rows(engine, "SELECT label FROM tags") == [("urgent",)]
    assert session.load(Tag, "urgent") == Tag(label="urgent")


def test_remove_deletes_row(session: Session) -> None:
    key = session.save(User(id=0, name="Ann"))

    session.remove(User(id=key, name="Ann"))

    assert session.get("User", key) is None


def test_remove_does_not_check_key_is_set(session: Session, engine: Engine) -> None:
    # unlike persist/update, remove has no key precondition; an unset key simply matches nothing
    session.save(User(id=0, name="Ann"))

    session.remove(User(id=0, name="Nobody"))

    assert fetch_rows(engine, 'SELECT name FROM "user"') == [("Ann",)]


def test_refresh_overwrites_fields_from_database(session: Session, engine: Engine) -> None:
    user = User(id=0, name="Ann")
    key = session.save(user)
    execute(engine, 'UPDATE "user" SET name = :name WHERE id = :id', name="Changed", id=key)

    session.refresh(user)

    assert user == User(id=key, name="Changed")


def test_refresh_requires_key(session: Session) -> None:
    with pytest.raises(MissingKeyError):
        session.refresh(User(id=0, name="Ann"))


def test_refresh_raises_when_row_is_gone(session: Session, engine: Engine) -> None:
    user = User(id=0, name="Ann")
    key = session.save(user)
    execute(engine, 'DELETE FROM "user" WHERE id = :id', id=key)

    with pytest.raises(EntityNotFoundError):
        session.refresh(user)


def test_sessions_see_each_others_writes(session: Session, session_factory: SessionFactory) -> None:
    key = session.save(User(id=0, name="Ann"))

    with session_factory.open_session() as other:
        assert other.get("User", key) == User(id=key, name="Ann")


def test_unregistered_entity_is_rejected(session: Session) -> None:
    with pytest.raises(MappingError):
        session.get("Order", 1)
    with pytest.raises(MappingError):
        session.save(object())


def test_get_entity_name(session: Session) -> None:
    assert session.get_entity_name(User(id=1, name="Ann")) == "User"


def test_closed_session_rejects_operations(session: Session) -> None:
    session.close()

    assert not session.is_open()
    assert not session.is_connected()
    for operation in (
        lambda: session.get("User", 1),
        lambda: session.load("User", 1),
        lambda: session.refresh(User(id=1, name="Ann")),
        lambda: session.save(User(id=0, name="Ann")),
        lambda: session.persist(User(id=1, name="Ann")),
        lambda: session.update(User(id=1, name="Ann")),
        lambda: session.remove(User(id=1, name="Ann")),
        lambda: session.create_query("FROM User"),
        lambda: session.get_session_factory(),
        session.close,
    ):
        with pytest.raises(SessionClosedError):
            operation()


def test_context_manager_closes_session(session_factory: SessionFactory) -> None:
    with session_factory.open_session() as session:
        assert session.is_open()

    assert not session.is_open()
    assert session not in session_factory.active_sessions


def test_releases_statement_and_cursor_when_hydration_fails(
    session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    key = session.save(User(id=0, name="Ann"))
    closed = []

    def failing_read(*args, **kwargs):
        raise RuntimeError("hydration failed")

    def recording_close(original):
        def close(self) -> None:
            closed.append(type(self).__name__)
            original(self)

        return close

    monkeypatch.setattr(PreparedStatement, "close", recording_close(PreparedStatement.close))
    monkeypatch.setattr(ResultSet, "close", recording_close(ResultSet.close))
    monkeypatch.setattr(session._metadata, "read_all_columns", failing_read)

    with pytest.raises(RuntimeError):
        session.get("User", key)

    assert sorted(closed) == ["PreparedStatement", "ResultSet"]
