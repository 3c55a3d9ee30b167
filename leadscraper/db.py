from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from leadscraper import models  # noqa: F401  (registers tables on SQLModel.metadata)
from leadscraper.errors import StorageError
from leadscraper.settings import settings


def make_engine(url: str):
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def init_db(engine) -> None:
    try:
        SQLModel.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StorageError(f"could not initialise schema: {e}") from e


@lru_cache(maxsize=1)
def get_engine():
    engine = make_engine(settings.DATABASE_URL)
    init_db(engine)
    return engine


@contextmanager
def session_scope(engine) -> Iterator[Session]:
    """Session whose database errors surface as StorageError."""
    try:
        with Session(engine) as s:
            yield s
    except SQLAlchemyError as e:
        raise StorageError(f"database error: {e}") from e
