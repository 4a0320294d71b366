"""
Product Recommendation Mapper — Storage Interfaces

Abstract catalog / recommendation storage used by the mapper, the fallback
matcher and the recommendation saver, plus in-memory implementations for
tests and local runs. Production implementations live in asyncpg_repository.py.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Optional

from models import CatalogProduct, PriceRange, RecommendationRecord, SessionStatus


# ============================================================
# Database Abstraction Layer (Repository Pattern)
# ============================================================

class CatalogRepository:
    """
    Read-only catalog access. Every query is restricted to in-stock
    products belonging to the given category.
    """

    async def find_products_in_category(
        self,
        category_id: str,
        price_range: Optional[PriceRange] = None,
        limit: int = 1000,
    ) -> list[CatalogProduct]:
        raise NotImplementedError

    async def find_products_by_keywords(
        self, category_id: str, keywords: list[str], limit: int = 50
    ) -> list[CatalogProduct]:
        """Products whose name, description or features contain ANY keyword."""
        raise NotImplementedError

    async def find_popular_in_category(
        self, category_id: str, min_rating: float = 4.0, min_reviews: int = 50
    ) -> Optional[CatalogProduct]:
        """Highest rated, then most reviewed, product above both floors."""
        raise NotImplementedError

    async def find_by_price_range_in_category(
        self, category_id: str, price_range: PriceRange
    ) -> Optional[CatalogProduct]:
        """Highest rated, then most reviewed, product priced within the range."""
        raise NotImplementedError


class RecommendationStore:
    """Persistence for mapped recommendations and session state lookups."""

    async def count_for_session(self, session_id: str) -> int:
        raise NotImplementedError

    async def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        raise NotImplementedError

    async def existing_product_ids(self, product_ids: list[str]) -> set[str]:
        raise NotImplementedError

    async def insert_recommendations(self, records: list[RecommendationRecord]) -> None:
        """Insert all records atomically."""
        raise NotImplementedError

    async def delete_for_session(self, session_id: str) -> int:
        raise NotImplementedError

    async def replace_for_session(
        self, session_id: str, records: list[RecommendationRecord]
    ) -> None:
        """Delete then insert atomically."""
        raise NotImplementedError


# ============================================================
# In-Memory Repositories (for testing / local dev)
# ============================================================

@dataclass
class _CatalogEntry:
    product: CatalogProduct
    category_ids: set[str] = field(default_factory=set)
    in_stock: bool = True


def _popularity_key(p: CatalogProduct) -> tuple[float, int]:
    return (p.rating or 0.0, p.review_count or 0)


class InMemoryCatalogRepository(CatalogRepository):
    """In-memory catalog for testing without a database."""

    def __init__(self):
        self.entries: dict[str, _CatalogEntry] = {}

    def add_product(
        self,
        product: CatalogProduct,
        category_ids: Iterable[str],
        in_stock: bool = True,
    ) -> CatalogProduct:
        self.entries[product.id] = _CatalogEntry(
            product=product, category_ids=set(category_ids), in_stock=in_stock
        )
        return product

    def _in_category(self, category_id: str) -> list[CatalogProduct]:
        return [
            e.product for e in self.entries.values()
            if e.in_stock and category_id in e.category_ids
        ]

    async def find_products_in_category(
        self,
        category_id: str,
        price_range: Optional[PriceRange] = None,
        limit: int = 1000,
    ) -> list[CatalogProduct]:
        products = self._in_category(category_id)
        if price_range:
            products = [p for p in products if _price_within(p, price_range)]
        return products[:limit]

    async def find_products_by_keywords(
        self, category_id: str, keywords: list[str], limit: int = 50
    ) -> list[CatalogProduct]:
        words = [w.lower() for w in keywords if w]
        if not words:
            return []
        hits = []
        for p in self._in_category(category_id):
            haystacks = [p.name.lower(), (p.description or "").lower(),
                         p.features_text.lower()]
            if any(w in h for w in words for h in haystacks):
                hits.append(p)
        return hits[:limit]

    async def find_popular_in_category(
        self, category_id: str, min_rating: float = 4.0, min_reviews: int = 50
    ) -> Optional[CatalogProduct]:
        candidates = [
            p for p in self._in_category(category_id)
            if p.rating is not None and p.rating >= min_rating
            and p.review_count is not None and p.review_count >= min_reviews
        ]
        return max(candidates, key=_popularity_key, default=None)

    async def find_by_price_range_in_category(
        self, category_id: str, price_range: PriceRange
    ) -> Optional[CatalogProduct]:
        candidates = [
            p for p in self._in_category(category_id)
            if _price_within(p, price_range)
        ]
        return max(candidates, key=_popularity_key, default=None)


class InMemoryRecommendationStore(RecommendationStore):
    """In-memory recommendation store for testing without a database."""

    def __init__(self):
        self.sessions: dict[str, SessionStatus] = {}
        self.product_ids: set[str] = set()
        self.recommendations: dict[str, list[RecommendationRecord]] = {}

    async def count_for_session(self, session_id: str) -> int:
        return len(self.recommendations.get(session_id, []))

    async def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        return self.sessions.get(session_id)

    async def existing_product_ids(self, product_ids: list[str]) -> set[str]:
        return {pid for pid in product_ids if pid in self.product_ids}

    async def insert_recommendations(self, records: list[RecommendationRecord]) -> None:
        for record in records:
            self.recommendations.setdefault(record.session_id, []).append(record)

    async def delete_for_session(self, session_id: str) -> int:
        return len(self.recommendations.pop(session_id, []))

    async def replace_for_session(
        self, session_id: str, records: list[RecommendationRecord]
    ) -> None:
        self.recommendations[session_id] = list(records)


def _price_within(product: CatalogProduct, price_range: PriceRange) -> bool:
    return (
        product.price is not None
        and price_range.min <= product.price <= price_range.max
    )
