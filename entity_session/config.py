import logging
import typing

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from entity_session.driver import DataSource
from entity_session.entity import Entity
from entity_session.metadata import EntityMetaData
from entity_session.session import SessionFactory


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Engine settings, read from ``ENTITY_SESSION_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="ENTITY_SESSION_", case_sensitive=False, extra="ignore", frozen=True)

    url: str
    echo: bool = False
    pool_size: typing.Optional[int] = None
    max_overflow: typing.Optional[int] = None
    connect_args: typing.Dict[str, typing.Any] = Field(default_factory=dict)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def engine_options(self) -> typing.Dict[str, typing.Any]:
        options: typing.Dict[str, typing.Any] = {"echo": self.echo}
        if self.connect_args:
            options["connect_args"] = dict(self.connect_args)
        # sqlite engines may use pools that take no sizing arguments
        if not self.is_sqlite:
            if self.pool_size is not None:
                options["pool_size"] = self.pool_size
            if self.max_overflow is not None:
                options["max_overflow"] = self.max_overflow
        return options


def create_session_factory(
    settings: typing.Union[Settings, str], *entity_classes: typing.Type[Entity]
) -> SessionFactory:
    if isinstance(settings, str):
        settings = Settings(url=settings)
    data_source = DataSource.from_url(settings.url, **settings.engine_options())
    metadata = EntityMetaData(*entity_classes)
    logger.debug(
        "Creating session factory for %s with entities %s",
        data_source.dialect.name,
        ", ".join(info.name for info in metadata.entities),
    )
    return SessionFactory(metadata, data_source.dialect, data_source)
