from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, final

from .exceptions import SchemaLoadError
from .tools import placeholder


if TYPE_CHECKING:
    from .connection import ConnectionProvider

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA: Final[str] = "public"

FOREIGN_KEYS_SQL: Final[str] = f"""
SELECT
    tc.constraint_name,
    tc.table_name AS from_table,
    kcu.column_name AS from_column,
    ccu.table_name AS to_table,
    ccu.column_name AS to_column
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
  ON tc.constraint_name = ccu.constraint_name
 AND tc.table_schema = ccu.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
  AND tc.table_schema = {placeholder(1)}
"""


@dataclass(slots=True, frozen=True)
class FKInfo:
    """One foreign-key column pair: ``from_table.from_column -> to_table.to_column``."""

    constraint_name: str
    from_table: str
    from_column: str
    to_table: str
    to_column: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> FKInfo:
        return cls(
            constraint_name=row["constraint_name"],
            from_table=row["from_table"],
            from_column=row["from_column"],
            to_table=row["to_table"],
            to_column=row["to_column"],
        )


@final
class SchemaCache:
    """Lazily populated cache of the database's foreign-key graph.

    One instance is owned by each client (one per connection pool). The
    first :meth:`get` issues the information-schema query; callers arriving
    while it runs await the same task, so the query runs once no matter how
    many statements need it. A failed load is forgotten, so the next call
    retries instead of replaying the error forever.

    The check-and-set of the pending task has no suspension point, which makes
    it atomic under asyncio; :meth:`invalidate` bumps a generation counter so a
    load started before invalidation never repopulates the cache.
    """

    __slots__ = (
        "_foreign_keys",
        "_generation",
        "_hits",
        "_misses",
        "_pending",
        "_provider",
        "schema",
    )

    def __init__(self, provider: ConnectionProvider, *, schema: str = DEFAULT_SCHEMA) -> None:
        self._provider = provider
        self.schema = schema
        self._foreign_keys: tuple[FKInfo, ...] | None = None
        self._pending: asyncio.Future[tuple[FKInfo, ...]] | None = None
        self._generation = 0
        self._hits = 0
        self._misses = 0

    @property
    def foreign_keys(self) -> tuple[FKInfo, ...] | None:
        """The cached foreign keys, or ``None`` when not loaded yet."""
        return self._foreign_keys

    async def get(self) -> tuple[FKInfo, ...]:
        """Return all foreign keys of the schema, loading them at most once.

        Raises:
            SchemaLoadError: If the introspection query failed.
        """
        if self._foreign_keys is not None:
            self._hits += 1
            return self._foreign_keys

        if self._pending is None:
            self._misses += 1
            self._pending = asyncio.ensure_future(self._load(self._generation))

        # shield: one caller being cancelled must not cancel the shared load
        return await asyncio.shield(self._pending)

    async def _load(self, generation: int) -> tuple[FKInfo, ...]:
        try:
            rows = await self._provider.acquire().fetch(FOREIGN_KEYS_SQL, [self.schema])
        except Exception as exc:
            if generation == self._generation:
                self._pending = None
            raise SchemaLoadError(f"Failed to load foreign keys: {exc}") from exc

        foreign_keys = tuple(FKInfo.from_row(row) for row in rows)
        if generation == self._generation:
            self._foreign_keys = foreign_keys
            self._pending = None

        logger.debug("Loaded %d foreign keys from schema %r", len(foreign_keys), self.schema)

        return foreign_keys

    def invalidate(self) -> None:
        """Forget the cached graph (after migrations, or between tests)."""
        self._generation += 1
        self._foreign_keys = None
        self._pending = None

    def by_constraint(self, name: str) -> Sequence[FKInfo]:
        """Look up the cached rows of constraint *name* (empty when not loaded)."""
        return tuple(fk for fk in self._foreign_keys or () if fk.constraint_name == name)

    def cache_info(self) -> dict[str, Any]:
        """Return hit/miss statistics, in the spirit of ``functools`` caches."""
        return {
            "hits": self._hits,
            "misses": self._misses,
            "loaded": self._foreign_keys is not None,
            "size": len(self._foreign_keys or ()),
        }
