"""
Product Recommendation Mapper — Product Mapper

Responsibilities:
  1. Catalog lookup per recommendation (category, in-stock, optional price band)
  2. Weighted multi-factor confidence scoring of every candidate product
  3. Ranking; the best candidate is returned regardless of threshold
  4. Threshold evaluation with fallback matching
  5. Batch statistics

Storage errors propagate; the orchestrating caller classifies them.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from config import Settings
from fallback_matcher import FallbackConfig, FallbackMatcher
from match_statistics import summarize
from models import (
    CatalogProduct, MatchingStatistics, PriceRange, ProductMatch,
    RecommendationCandidate,
)
from repository import CatalogRepository
from scoring import MatchWeights, calculate_confidence, generate_match_reasons

logger = logging.getLogger(__name__)

FALLBACK_REASON = "fallback match"


# ============================================================
# Configuration
# ============================================================

@dataclass
class MappingConfig:
    """Tunable parameters for product mapping."""
    mapping_threshold: float = 0.7
    candidate_limit: int = 1000
    weights: MatchWeights = field(default_factory=MatchWeights)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)

    def __post_init__(self):
        if not 0.0 <= self.mapping_threshold <= 1.0:
            raise ValueError("mapping_threshold must be between 0.0 and 1.0")

    @classmethod
    def from_settings(cls, settings: Settings) -> MappingConfig:
        return cls(
            mapping_threshold=settings.mapping_threshold,
            candidate_limit=settings.candidate_limit,
            fallback=FallbackConfig(
                keyword_candidate_limit=settings.relaxed_candidate_limit,
            ),
        )


DEFAULT_CONFIG = MappingConfig()


# ============================================================
# Product Mapper
# ============================================================

class ProductMapper:
    """
    Maps one normalized AI recommendation onto a catalog product.
    """

    def __init__(
        self,
        catalog: CatalogRepository,
        config: MappingConfig = DEFAULT_CONFIG,
        fallback: Optional[FallbackMatcher] = None,
    ):
        self.catalog = catalog
        self.config = config
        self.fallback = fallback or FallbackMatcher(catalog, config.fallback)

    async def map_to_product(
        self, candidate: RecommendationCandidate, category_id: str
    ) -> Optional[ProductMatch]:
        """Best-scoring product, or None when nothing scored above zero."""
        matches = await self.find_similar_products(
            candidate.product_name,
            candidate.features,
            category_id,
            candidate.price_range,
        )
        return matches[0] if matches else None

    async def find_similar_products(
        self,
        name: str,
        features: list[str],
        category_id: str,
        price_range: Optional[PriceRange] = None,
    ) -> list[ProductMatch]:
        """All products with non-zero confidence, highest first."""
        products = await self.catalog.find_products_in_category(
            category_id, price_range, limit=self.config.candidate_limit
        )
        if not products:
            return []

        candidate = RecommendationCandidate(
            product_name=name, features=features, price_range=price_range
        )
        return self.rank_products(candidate, products)

    def rank_products(
        self,
        candidate: RecommendationCandidate,
        products: Sequence[CatalogProduct],
    ) -> list[ProductMatch]:
        matches: list[ProductMatch] = []
        for product in products:
            confidence = calculate_confidence(candidate, product, self.config.weights)
            if confidence > 0:
                matches.append(ProductMatch(
                    product_id=product.id,
                    confidence=confidence,
                    match_reasons=generate_match_reasons(candidate, product),
                ))
        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches

    async def map_with_confidence_evaluation(
        self, candidate: RecommendationCandidate, category_id: str
    ) -> Optional[ProductMatch]:
        """
        Primary match when it clears the threshold; otherwise the fallback
        tiers. A sub-threshold primary match is never returned.
        """
        threshold = self.config.mapping_threshold
        primary = await self.map_to_product(candidate, category_id)

        if primary and primary.confidence >= threshold:
            logger.info(
                f"Primary mapping succeeded: {primary.product_id} "
                f"(confidence {primary.confidence:.3f})"
            )
            return primary

        logger.info(
            f"Primary mapping below threshold: "
            f"{primary.confidence if primary else 0:.3f} < {threshold}"
        )

        fallback = await self.fallback.perform_fallback_matching(candidate, category_id)
        if fallback:
            return fallback.model_copy(
                update={"match_reasons": [FALLBACK_REASON, *fallback.match_reasons]}
            )

        logger.info(f"No match found for: {candidate.product_name}")
        return None

    def get_matching_statistics(
        self, matches: Sequence[Optional[ProductMatch]]
    ) -> MatchingStatistics:
        return summarize(matches, self.config.mapping_threshold)
