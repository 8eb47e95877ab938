from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def normalize_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def build_engine(url: str) -> Engine:
    engine_url = normalize_url(url)
    kwargs: dict[str, object] = {"future": True}

    if engine_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        db_path = engine_url.replace("sqlite:///", "")
        if db_path in ("", ":memory:", "sqlite://"):
            # One shared connection, otherwise every session sees an empty database.
            kwargs["poolclass"] = StaticPool
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(engine_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    from . import orm_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
