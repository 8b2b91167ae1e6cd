import enum
import typing
from datetime import date

from sqlalchemy import Column, Date, Integer, MetaData, String, Table, create_engine

from entity_session import Entity, Generated, ValueObject, create_session_factory


class Status(enum.Enum):
    NEW = "NEW"
    OLD = "OLD"


class Subscription(ValueObject):
    plan: str
    start: date


class Subscriber(Entity):
    id: Generated[int]
    name: str
    status: Status
    subscription: typing.Optional[Subscription] = None

    def subscribe(self, plan: str) -> None:
        if not self.subscription:
            self.subscription = Subscription(plan, date.today())


url = "sqlite:///example.db"

schema = MetaData()
Table(
    "subscribers",
    schema,
    Column("id", Integer, primary_key=True),
    Column("name", String(255)),
    Column("status", String(8)),
    Column("subscription_plan", String(32), nullable=True),
    Column("subscription_start", Date, nullable=True),
)
engine = create_engine(url)
schema.drop_all(engine)
schema.create_all(engine)

factory = create_session_factory(url, Subscriber)

with factory.open_session() as session:
    subscriber = Subscriber(None, "Seba", Status.NEW)
    subscriber.subscribe("gold")
    subscriber_id = session.save(subscriber)

    got_subscriber = session.get(Subscriber, subscriber_id)
    assert got_subscriber == subscriber, f"\n{got_subscriber}\n{subscriber}"

    subscriber.status = Status.OLD
    session.update(subscriber)

    query = session.create_query("FROM Subscriber s WHERE s.subscription.plan = :plan").set_parameter("plan", "gold")
    assert query.unique_result() == subscriber

    for name, status in session.create_query("SELECT s.name, s.status FROM Subscriber s").list_rows():
        print(name.as_text(), status.as_text())

factory.close()
schema.drop_all(engine)
