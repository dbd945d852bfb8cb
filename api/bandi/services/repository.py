from __future__ import annotations

import logging
from collections.abc import Sequence
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from bandi.core.config import get_settings

logger = logging.getLogger(__name__)

INTEGRITY_ERRORS = (
    pg_exc.ForeignKeyViolationError,
    pg_exc.RestrictViolationError,
    pg_exc.CheckViolationError,
    pg_exc.NotNullViolationError,
)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable, not configured, or fails opaquely."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a natural key is already taken or a state precondition fails."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before or during persistence."""


class ReconciliationError(RepositoryError):
    """Raised when one or more actions of a batch failed.

    Actions that already succeeded are not rolled back.
    """

    def __init__(self, message: str, errors: Sequence[BaseException]) -> None:
        super().__init__(message)
        self.errors = list(errors)

    def __str__(self) -> str:
        details = "; ".join(str(error) for error in self.errors)
        base = super().__str__()
        return f"{base}: {details}" if details else base


def affected_rows(command_tag: str | None) -> int:
    """Parse the affected row count out of a Postgres command tag (``UPDATE 3``)."""
    if not command_tag:
        return 0
    last = command_tag.rsplit(" ", maxsplit=1)[-1]
    try:
        return int(last)
    except ValueError:
        return 0


class PostgresGateway:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout: float = 15.0,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def fetch(self, statement: str, *params: Any) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(statement, *params)
        except Exception as exc:
            raise self._translate(exc) from exc
        return [dict(row) for row in rows]

    async def fetchrow(self, statement: str, *params: Any) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(statement, *params)
        except Exception as exc:
            raise self._translate(exc) from exc
        return dict(row) if row is not None else None

    async def execute(self, statement: str, *params: Any) -> int:
        pool = await self._get_pool()
        try:
            command_tag = await pool.execute(statement, *params)
        except Exception as exc:
            raise self._translate(exc) from exc
        return affected_rows(command_tag)

    @staticmethod
    def _translate(exc: Exception) -> RepositoryError:
        if isinstance(exc, RepositoryError):
            return exc
        if isinstance(exc, pg_exc.UniqueViolationError):
            return RepositoryConflictError(exc.detail or "duplicate key")
        if isinstance(exc, INTEGRITY_ERRORS):
            return RepositoryValidationError(exc.detail or str(exc))
        if isinstance(exc, pg_exc.DataError):
            return RepositoryValidationError(str(exc))
        logger.error("database operation failed: %s", exc)
        return RepositoryUnavailableError("database operation failed")

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("BANDI_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc


@lru_cache
def get_gateway() -> PostgresGateway:
    settings = get_settings()
    return PostgresGateway(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout=settings.database_command_timeout_seconds,
    )
