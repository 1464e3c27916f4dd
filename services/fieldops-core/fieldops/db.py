from pathlib import Path

from sqlalchemy.engine import Engine, make_url
from sqlmodel import SQLModel, create_engine

from fieldops.config import settings


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(database_url, echo=False, pool_pre_ping=True)


engine = build_engine(settings.database_url)


def init_db(bind: Engine | None = None) -> None:
    # import for table registration
    from fieldops import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
