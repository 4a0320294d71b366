"""
Product Recommendation Mapper — Fallback Matcher

Used when the primary mapping is absent or below the confidence threshold.
Tiers, first success wins:
  1. Relaxed keyword search scored with reduced weights
  2. Most popular in-stock product in the category
  3. Highest rated product inside the requested price range

Storage errors propagate to the caller.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Optional

from models import ProductMatch, RecommendationCandidate
from repository import CatalogRepository
from scoring import (
    RelaxedWeights, calculate_relaxed_confidence, generate_match_reasons,
    normalize_text,
)

logger = logging.getLogger(__name__)

RELAXED_REASON = "relaxed-criteria match"
POPULAR_REASON = "substitute: popular product in category"
PRICE_ONLY_REASON = "substitute: price-range match"


@dataclass
class FallbackConfig:
    """Tunable parameters for the fallback tiers."""
    min_keyword_length: int = 3
    keyword_candidate_limit: int = 50
    min_relaxed_confidence: float = 0.3
    relaxed_weights: RelaxedWeights = field(default_factory=RelaxedWeights)

    popular_min_rating: float = 4.0
    popular_min_reviews: int = 50
    popular_confidence: float = 0.5

    price_only_confidence: float = 0.4


DEFAULT_FALLBACK_CONFIG = FallbackConfig()


def extract_keywords(product_name: str, min_length: int = 3) -> list[str]:
    """Words of the normalized name with at least min_length characters."""
    return [w for w in normalize_text(product_name).split(" ") if len(w) >= min_length]


class FallbackMatcher:

    def __init__(
        self,
        catalog: CatalogRepository,
        config: FallbackConfig = DEFAULT_FALLBACK_CONFIG,
    ):
        self.catalog = catalog
        self.config = config

    async def perform_fallback_matching(
        self, candidate: RecommendationCandidate, category_id: str
    ) -> Optional[ProductMatch]:
        logger.info(f"Fallback matching started: {candidate.product_name}")

        relaxed = await self.find_with_relaxed_criteria(candidate, category_id)
        if relaxed:
            best = relaxed[0]
            logger.info(
                f"Relaxed match found: {best.product_id} (confidence {best.confidence:.3f})"
            )
            return best

        popular = await self.find_popular_product(category_id)
        if popular:
            logger.info(f"Suggesting popular product: {popular.product_id}")
            return popular

        if candidate.price_range:
            priced = await self.find_by_price_range(candidate, category_id)
            if priced:
                logger.info(f"Price-range match found: {priced.product_id}")
                return priced

        logger.info(f"No fallback match for: {candidate.product_name}")
        return None

    # ----------------------------------------------------------
    # Tiers
    # ----------------------------------------------------------

    async def find_with_relaxed_criteria(
        self, candidate: RecommendationCandidate, category_id: str
    ) -> list[ProductMatch]:
        cfg = self.config
        keywords = extract_keywords(candidate.product_name, cfg.min_keyword_length)
        if not keywords:
            return []

        products = await self.catalog.find_products_by_keywords(
            category_id, keywords, limit=cfg.keyword_candidate_limit
        )

        matches: list[ProductMatch] = []
        for product in products:
            confidence = calculate_relaxed_confidence(
                candidate, product, cfg.relaxed_weights
            )
            if confidence > cfg.min_relaxed_confidence:
                matches.append(ProductMatch(
                    product_id=product.id,
                    confidence=confidence,
                    match_reasons=[
                        RELAXED_REASON,
                        *generate_match_reasons(candidate, product),
                    ],
                ))

        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches

    async def find_popular_product(self, category_id: str) -> Optional[ProductMatch]:
        cfg = self.config
        product = await self.catalog.find_popular_in_category(
            category_id,
            min_rating=cfg.popular_min_rating,
            min_reviews=cfg.popular_min_reviews,
        )
        if not product:
            return None

        return ProductMatch(
            product_id=product.id,
            confidence=cfg.popular_confidence,
            match_reasons=[
                POPULAR_REASON,
                f"rating: {product.rating}/5.0",
                f"reviews: {product.review_count}",
            ],
        )

    async def find_by_price_range(
        self, candidate: RecommendationCandidate, category_id: str
    ) -> Optional[ProductMatch]:
        product = await self.catalog.find_by_price_range_in_category(
            category_id, candidate.price_range
        )
        if not product:
            return None

        reasons = [PRICE_ONLY_REASON]
        if product.price is not None:
            reasons.append(f"price: ¥{product.price:,.0f}")
        if product.rating is not None:
            reasons.append(f"rating: {product.rating}/5.0")

        return ProductMatch(
            product_id=product.id,
            confidence=self.config.price_only_confidence,
            match_reasons=reasons,
        )
