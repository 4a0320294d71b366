"""
asyncpg_repository.py — Production PostgreSQL repository implementation.

Implements CatalogRepository and RecommendationStore using an asyncpg
connection pool. Tables:
  products(id, name, description, features, price, rating, review_count, availability)
  product_categories(product_id, category_id)
  questionnaire_sessions(id, status)
  recommendations(id, questionnaire_session_id, product_id, rank, score, reason, created_at)
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

from config import Settings
from models import CatalogProduct, PriceRange, RecommendationRecord, SessionStatus
from repository import CatalogRepository, RecommendationStore

logger = logging.getLogger(__name__)

IN_STOCK = 1

# ── Connection Pool Manager ──────────────────────────────────────────────────

class DatabasePool:
    """Manages asyncpg connection pool lifecycle."""

    def __init__(self, dsn: str, min_size: int = 5, max_size: int = 20,
                 command_timeout: float = 10.0):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool: Optional[asyncpg.Pool] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> DatabasePool:
        return cls(
            settings.asyncpg_dsn,
            min_size=settings.db_pool_min,
            max_size=settings.db_pool_max,
            command_timeout=settings.db_operation_timeout_ms / 1000,
        )

    async def initialize(self) -> None:
        self._pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
        )
        logger.info(
            "Database pool initialized (min=%d, max=%d)", self.min_size, self.max_size
        )

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self):
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            logger.info("Database pool closed")


# ── Catalog Repository ───────────────────────────────────────────────────────

_PRODUCT_COLUMNS = """
    p.id, p.name, p.description, p.features, p.price, p.rating, p.review_count
"""

_IN_CATEGORY = """
    p.availability = $1
    AND EXISTS (
        SELECT 1 FROM product_categories pc
        WHERE pc.product_id = p.id AND pc.category_id = $2
    )
"""


def _row_to_product(row: Any) -> CatalogProduct:
    return CatalogProduct(
        id=str(row["id"]),
        name=row["name"],
        description=row["description"],
        features_text=row["features"] or "",
        price=row["price"],
        rating=row["rating"],
        review_count=row["review_count"],
    )


def _like_pattern(word: str) -> str:
    escaped = word.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class AsyncPGCatalogRepository(CatalogRepository):
    """Catalog reads for product mapping and fallback matching."""

    def __init__(self, db: DatabasePool):
        self.db = db

    async def find_products_in_category(
        self,
        category_id: str,
        price_range: Optional[PriceRange] = None,
        limit: int = 1000,
    ) -> list[CatalogProduct]:
        conditions = [_IN_CATEGORY]
        vals: list[Any] = [IN_STOCK, category_id]

        if price_range:
            conditions.append(f"p.price BETWEEN ${len(vals) + 1} AND ${len(vals) + 2}")
            vals.extend([price_range.min, price_range.max])

        vals.append(int(limit))
        query = f"""
            SELECT {_PRODUCT_COLUMNS}
            FROM products p
            WHERE {" AND ".join(conditions)}
            LIMIT ${len(vals)}
        """
        async with self.db.acquire() as conn:
            rows = await conn.fetch(query, *vals)
            return [_row_to_product(r) for r in rows]

    async def find_products_by_keywords(
        self, category_id: str, keywords: list[str], limit: int = 50
    ) -> list[CatalogProduct]:
        patterns = [_like_pattern(w) for w in keywords if w]
        if not patterns:
            return []

        query = f"""
            SELECT {_PRODUCT_COLUMNS}
            FROM products p
            WHERE {_IN_CATEGORY}
              AND (
                p.name ILIKE ANY($3::text[])
                OR p.description ILIKE ANY($3::text[])
                OR p.features ILIKE ANY($3::text[])
              )
            LIMIT $4
        """
        async with self.db.acquire() as conn:
            rows = await conn.fetch(query, IN_STOCK, category_id, patterns, int(limit))
            return [_row_to_product(r) for r in rows]

    async def find_popular_in_category(
        self, category_id: str, min_rating: float = 4.0, min_reviews: int = 50
    ) -> Optional[CatalogProduct]:
        query = f"""
            SELECT {_PRODUCT_COLUMNS}
            FROM products p
            WHERE {_IN_CATEGORY}
              AND p.rating >= $3
              AND p.review_count >= $4
            ORDER BY p.rating DESC, p.review_count DESC
            LIMIT 1
        """
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(query, IN_STOCK, category_id, min_rating, min_reviews)
            return _row_to_product(row) if row else None

    async def find_by_price_range_in_category(
        self, category_id: str, price_range: PriceRange
    ) -> Optional[CatalogProduct]:
        query = f"""
            SELECT {_PRODUCT_COLUMNS}
            FROM products p
            WHERE {_IN_CATEGORY}
              AND p.price BETWEEN $3 AND $4
            ORDER BY p.rating DESC NULLS LAST, p.review_count DESC NULLS LAST
            LIMIT 1
        """
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                query, IN_STOCK, category_id, price_range.min, price_range.max
            )
            return _row_to_product(row) if row else None


# ── Recommendation Store ─────────────────────────────────────────────────────

_INSERT_RECOMMENDATION = """
    INSERT INTO recommendations
        (id, questionnaire_session_id, product_id, rank, score, reason, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
"""


class AsyncPGRecommendationStore(RecommendationStore):
    """Recommendation persistence with transactional writes."""

    def __init__(self, db: DatabasePool):
        self.db = db

    async def count_for_session(self, session_id: str) -> int:
        async with self.db.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM recommendations WHERE questionnaire_session_id = $1",
                session_id,
            )

    async def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        async with self.db.acquire() as conn:
            status = await conn.fetchval(
                "SELECT status FROM questionnaire_sessions WHERE id = $1",
                session_id,
            )
            return SessionStatus(status) if status else None

    async def existing_product_ids(self, product_ids: list[str]) -> set[str]:
        if not product_ids:
            return set()
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id FROM products WHERE id = ANY($1::text[])",
                list(product_ids),
            )
            return {str(r["id"]) for r in rows}

    async def insert_recommendations(self, records: list[RecommendationRecord]) -> None:
        async with self.db.transaction() as conn:
            await self._insert(conn, records)
        logger.info("Inserted %d recommendations", len(records))

    async def delete_for_session(self, session_id: str) -> int:
        async with self.db.transaction() as conn:
            result = await conn.execute(
                "DELETE FROM recommendations WHERE questionnaire_session_id = $1",
                session_id,
            )
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(result.split()[-1])

    async def replace_for_session(
        self, session_id: str, records: list[RecommendationRecord]
    ) -> None:
        async with self.db.transaction() as conn:
            await conn.execute(
                "DELETE FROM recommendations WHERE questionnaire_session_id = $1",
                session_id,
            )
            await self._insert(conn, records)
        logger.info("Replaced recommendations for session %s (%d rows)",
                    session_id, len(records))

    @staticmethod
    async def _insert(conn: asyncpg.Connection, records: list[RecommendationRecord]) -> None:
        now = datetime.now(timezone.utc)
        await conn.executemany(
            _INSERT_RECOMMENDATION,
            [
                (str(uuid.uuid4()), r.session_id, r.product_id, r.rank,
                 r.score, r.reason, now)
                for r in records
            ],
        )
