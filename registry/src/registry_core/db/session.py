"""Database engine and session helpers."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import BackendError
from .dialects import DialectAdapter, adapter_for

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRY_DELAY_SECONDS = 10.0


def resolve_database_url(raw_url: str) -> URL:
    """Normalize ``raw_url`` into a SQLAlchemy URL.

    Accepts ``postgres://`` shorthands, ``sqlite:`` URLs and bare filesystem
    paths; parent directories of SQLite files are created.
    """

    if raw_url.startswith("postgres://"):
        raw_url = "postgresql://" + raw_url[len("postgres://"):]
    elif raw_url.startswith("sqlite:") and not raw_url.startswith("sqlite://"):
        raw_url = "sqlite:///" + raw_url[len("sqlite:"):]
    elif "://" not in raw_url:
        raw_url = f"sqlite:///{raw_url}"

    url: URL = make_url(raw_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        db_path = Path(url.database).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = url.set(database=str(db_path))
    return url


class Database:
    """Owns the engine and session factory for one metadata backend."""

    def __init__(
        self,
        url: str | URL,
        *,
        echo: bool = False,
        retry_attempts: int = 30,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.url = url if isinstance(url, URL) else resolve_database_url(url)
        self.adapter: DialectAdapter = adapter_for(self.url)
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._logger = logger or LOGGER
        self.engine: Engine = create_engine(
            self.url,
            echo=echo,
            **self.adapter.engine_options(self.url),
        )
        self.adapter.configure(self.engine)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def dialect_name(self) -> str:
        return self.adapter.name

    def connect(self) -> None:
        """Wait for the backend to accept connections, with bounded backoff.

        Only used at startup; request-time failures surface immediately.
        """

        delay = self._retry_delay
        for attempt in range(1, self._retry_attempts + 1):
            try:
                with self.engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                return
            except DBAPIError as exc:
                if attempt >= self._retry_attempts:
                    raise BackendError(
                        f"Database unavailable after {attempt} attempts: {exc.orig}"
                    ) from exc
                self._logger.warning(
                    "Database connection attempt %s/%s failed: %s",
                    attempt,
                    self._retry_attempts,
                    exc.orig,
                )
                self._sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY_SECONDS)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a transactional scope; commits on success, rolls back on error."""

        session: Session = self.SessionLocal()
        try:
            with session.begin():
                yield session
        except DBAPIError as exc:
            raise self.adapter.classify(exc) from exc
        finally:
            session.close()

    def run_in_session(self, fn: Callable[[Session], T]) -> T:
        with self.session() as session:
            return fn(session)

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = ["Database", "resolve_database_url"]
