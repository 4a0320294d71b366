"""
Product Recommendation Mapper — Matching Statistics

Pure reduction of a batch of mapping results into observability counters.
"""
from __future__ import annotations
from typing import Optional, Sequence

from models import MatchingStatistics, ProductMatch

# Any reason containing one of these marks a fallback / substitute match
FALLBACK_MARKERS: tuple[str, ...] = ("fallback", "substitute")


def is_fallback_match(match: ProductMatch) -> bool:
    return any(
        marker in reason.lower()
        for reason in match.match_reasons
        for marker in FALLBACK_MARKERS
    )


def summarize(
    matches: Sequence[Optional[ProductMatch]], threshold: float = 0.7
) -> MatchingStatistics:
    total = len(matches)
    found = [m for m in matches if m is not None]
    return MatchingStatistics(
        total_attempts=total,
        successful_matches=len(found),
        high_confidence_matches=sum(1 for m in found if m.confidence >= threshold),
        fallback_matches=sum(1 for m in found if is_fallback_match(m)),
        success_rate=len(found) / total if total else 0.0,
    )
