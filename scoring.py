"""
Product Recommendation Mapper — Match Scoring

Pure functions shared by the primary mapper and the fallback matcher:
  1. Text normalization
  2. Sub-scores: name, description text, features, price range
  3. Weighted confidence with a variable applicable-weight denominator
  4. Relaxed confidence (fallback tier 1)
  5. Human-readable match reasons (explanatory only, not scoring inputs)
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Optional

from models import CatalogProduct, PriceRange, RecommendationCandidate

_WHITESPACE = re.compile(r"[　\s]+")


def normalize_text(text: Optional[str]) -> str:
    """Lowercase, collapse full/half-width whitespace, ASCII-fy ！ and ？."""
    if not text:
        return ""
    normalized = _WHITESPACE.sub(" ", text.lower())
    return normalized.replace("！", "!").replace("？", "?").strip()


# ============================================================
# Sub-scores (each 0.0 - 1.0)
# ============================================================

def name_match_score(search_name: str, product_name: str) -> float:
    search = normalize_text(search_name)
    product = normalize_text(product_name)
    if not search or not product:
        return 0.0

    if search == product:
        return 1.0
    if search in product or product in search:
        return 0.8

    search_words = search.split(" ")
    product_words = product.split(" ")
    matching = sum(
        1 for sw in search_words
        if any(sw in pw or pw in sw for pw in product_words)
    )
    return matching / len(search_words) * 0.6


def text_match_score(search_text: str, target_text: str) -> float:
    search = normalize_text(search_text)
    target = normalize_text(target_text)
    if not search or not target:
        return 0.0

    if search in target:
        return 0.7

    search_words = search.split(" ")
    target_words = target.split(" ")
    matching = sum(
        1 for sw in search_words if any(sw in tw for tw in target_words)
    )
    return matching / len(search_words) * 0.5


def features_match_score(features: list[str], features_text: str) -> float:
    if not features:
        return 0.0
    haystack = normalize_text(features_text)
    matching = 0
    for feature in features:
        needle = normalize_text(feature)
        if needle and needle in haystack:
            matching += 1
    return matching / len(features)


def price_match_score(price_range: PriceRange, price: float) -> float:
    """1.0 inside [min, max]; linear decay to 0 over half the range width outside."""
    if price_range.min <= price <= price_range.max:
        return 1.0

    window = (price_range.max - price_range.min) * 0.5
    if window <= 0:
        return 0.0

    distance = min(abs(price - price_range.min), abs(price - price_range.max))
    if distance >= window:
        return 0.0
    return 1.0 - distance / window


# ============================================================
# Weighted Confidence
# ============================================================

@dataclass
class MatchWeights:
    """Per-signal weights for the primary confidence score."""
    name: float = 1.0
    description: float = 0.6
    features: float = 0.7
    price_range: float = 0.4


DEFAULT_WEIGHTS = MatchWeights()


@dataclass
class ScoreAccumulator:
    """Sum of weighted sub-scores over the weights that actually applied."""
    weighted_sum: float = 0.0
    total_weight: float = 0.0

    def add(self, score: float, weight: float) -> None:
        self.weighted_sum += score * weight
        self.total_weight += weight

    @property
    def confidence(self) -> float:
        if self.total_weight <= 0:
            return 0.0
        return max(0.0, min(1.0, self.weighted_sum / self.total_weight))


def calculate_confidence(
    candidate: RecommendationCandidate,
    product: CatalogProduct,
    weights: MatchWeights = DEFAULT_WEIGHTS,
) -> float:
    acc = ScoreAccumulator()

    if candidate.product_name:
        acc.add(name_match_score(candidate.product_name, product.name), weights.name)

    if candidate.product_name and product.description:
        acc.add(text_match_score(candidate.product_name, product.description),
                weights.description)

    if candidate.features:
        acc.add(features_match_score(candidate.features, product.features_text),
                weights.features)

    if candidate.price_range and product.price is not None:
        acc.add(price_match_score(candidate.price_range, product.price),
                weights.price_range)

    return acc.confidence


# ============================================================
# Relaxed Confidence (fallback)
# ============================================================

@dataclass
class RelaxedWeights:
    """Reduced weights for the relaxed keyword tier; averaged per factor."""
    name: float = 0.6
    features: float = 0.5
    price_range: float = 0.4
    rating_bonus: float = 0.2
    rating_bonus_min: float = 4.0


DEFAULT_RELAXED_WEIGHTS = RelaxedWeights()


def calculate_relaxed_confidence(
    candidate: RecommendationCandidate,
    product: CatalogProduct,
    weights: RelaxedWeights = DEFAULT_RELAXED_WEIGHTS,
) -> float:
    # a factor only counts when it contributed something
    score = 0.0
    factors = 0

    name_score = name_match_score(candidate.product_name, product.name)
    if name_score > 0:
        score += name_score * weights.name
        factors += 1

    if candidate.features:
        feature_score = features_match_score(candidate.features, product.features_text)
        if feature_score > 0:
            score += feature_score * weights.features
            factors += 1

    if candidate.price_range and product.price is not None:
        price_score = price_match_score(candidate.price_range, product.price)
        if price_score > 0:
            score += price_score * weights.price_range
            factors += 1

    if product.rating is not None and product.rating >= weights.rating_bonus_min:
        score += weights.rating_bonus
        factors += 1

    return min(1.0, score / factors) if factors else 0.0


# ============================================================
# Match Reasons
# ============================================================

HIGH_RATING = 4.0
MANY_REVIEWS = 100


def generate_match_reasons(
    candidate: RecommendationCandidate, product: CatalogProduct
) -> list[str]:
    reasons: list[str] = []

    name_score = name_match_score(candidate.product_name, product.name)
    if name_score >= 0.8:
        reasons.append("product name closely matches")
    elif name_score >= 0.5:
        reasons.append("product name partially matches")

    if candidate.features:
        feature_score = features_match_score(candidate.features, product.features_text)
        if feature_score >= 0.7:
            reasons.append("features closely match")
        elif feature_score >= 0.4:
            reasons.append("features partially match")

    if candidate.price_range and product.price is not None:
        price_score = price_match_score(candidate.price_range, product.price)
        if price_score >= 0.8:
            reasons.append("price within the requested range")
        elif price_score >= 0.5:
            reasons.append("price close to the requested range")

    if product.rating is not None and product.rating >= HIGH_RATING:
        reasons.append("highly rated product")

    if product.review_count is not None and product.review_count >= MANY_REVIEWS:
        reasons.append("popular product with many reviews")

    return reasons or ["matches basic criteria"]
