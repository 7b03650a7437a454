from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import TransportError
from .models import Base


@dataclass(frozen=True)
class Database:
    url: str
    echo: bool = False
    engine: Engine = field(init=False)
    session_factory: sessionmaker[Session] = field(init=False)

    def __post_init__(self) -> None:
        # SQLite connections are shared between the event loop and worker threads.
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        engine = create_engine(self.url, echo=self.echo, future=True, pool_pre_ping=True, connect_args=connect_args)
        session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
        object.__setattr__(self, "engine", engine)
        object.__setattr__(self, "session_factory", session_factory)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Unit of work; database failures surface as ``TransportError``."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise TransportError(f"Database error: {exc.__class__.__name__}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
