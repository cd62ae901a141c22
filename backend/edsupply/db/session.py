"""Database access context. SQLite compatible with connection pooling.

A `Database` is constructed explicitly and handed to every component that
needs storage (permission oracle, inventory service, audit recorder, jobs),
so tests can point the whole service at a throwaway database.
"""
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import NullPool

from edsupply.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for optimistic transactions that lose a write race."""

    max_attempts: int = 5
    backoff_seconds: float = 0.05
    max_backoff_seconds: float = 1.0

    def delay(self, attempt: int) -> float:
        """Exponential backoff after the given (1-based) failed attempt."""
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)


class Database:
    def __init__(self, url: str, echo: bool = False):
        self.url = url
        if url.startswith("sqlite"):
            # SQLite: NullPool for thread-safety, generous busy timeout so
            # concurrent writers queue instead of failing with "database is locked"
            self.engine = create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": 30},
                poolclass=NullPool,
            )
        else:
            # PostgreSQL/MySQL: QueuePool with sensible defaults
            self.engine = create_engine(
                url,
                echo=echo,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=3600,
                pool_pre_ping=True,
            )
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Read-mostly session; commits on success, rolls back on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def run_in_transaction(self, work: Callable[[Session], T], policy: RetryPolicy) -> T:
        """
        Run `work` in one atomic unit, retrying the whole unit on a version conflict.

        `work` must re-read everything it depends on from the session it is
        given; it is called again from scratch on every attempt. It should
        return plain values, not ORM instances.
        """
        for attempt in range(1, policy.max_attempts + 1):
            session = self.SessionLocal()
            try:
                result = work(session)
                session.commit()
                return result
            except StaleDataError as e:
                session.rollback()
                if attempt >= policy.max_attempts:
                    logger.error(f"Transaction conflict not resolved after {attempt} attempts: {e}")
                    raise ConcurrencyConflictError(attempt) from e
                delay = policy.delay(attempt)
                logger.info(f"Transaction conflict (attempt {attempt}/{policy.max_attempts}), retrying in {delay:.3f}s")
                time.sleep(delay)
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        raise ConcurrencyConflictError(policy.max_attempts)

    def dispose(self) -> None:
        self.engine.dispose()
