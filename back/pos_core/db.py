from collections.abc import Generator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from .settings import settings


def build_engine(url: str, echo: bool = False):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine(settings.database_url, echo=settings.db_echo)


def create_db_and_tables() -> None:
    # Import models so every table is registered on the metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def check_db_connection() -> None:
    with Session(engine) as session:
        session.exec(text("SELECT 1"))


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
