"""
Product Recommendation Mapper — Recommendation Pipeline

Bridges the AI service → catalog → recommendations table.
Responsibilities:
  1. Response analysis (structure, normalization, quality)
  2. Sequential product mapping with fallback, one item at a time
  3. Matching statistics for the batch
  4. Record construction (ranks follow the AI ordering)
  5. Persistence through the recommendation saver
"""
from __future__ import annotations
import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from config import Settings
from errors import ErrorCode, RecommendationError, classify_error
from models import (
    SESSION_ID_PATTERN, AIRecommendationRequest, MatchingStatistics, ProductMatch,
    RecommendationCandidate, RecommendationRecord, ResponseAnalysisResult,
)
from product_mapper import ProductMapper
from recommendation_saver import RecommendationSaver
from response_analyzer import ResponseAnalyzer

logger = logging.getLogger(__name__)


# ============================================================
# AI Service Collaborator
# ============================================================

class AIRecommendationClient:
    """
    Produces the raw (untyped) recommendation payload for a prompt.
    Implementations own transport, timeouts and retry/backoff.
    """

    async def generate_recommendations(self, request: AIRecommendationRequest) -> Any:
        raise NotImplementedError


# ============================================================
# Pipeline
# ============================================================

@dataclass
class PipelineResult:
    analysis: ResponseAnalysisResult
    matches: list[Optional[ProductMatch]]
    statistics: MatchingStatistics
    records: list[RecommendationRecord]
    saved: bool = False
    durations_ms: dict[str, int] = field(default_factory=dict)


class RecommendationPipeline:

    def __init__(
        self,
        analyzer: ResponseAnalyzer,
        mapper: ProductMapper,
        saver: Optional[RecommendationSaver] = None,
        ai_client: Optional[AIRecommendationClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.analyzer = analyzer
        self.mapper = mapper
        self.saver = saver
        self.ai_client = ai_client
        self.max_recommendations = settings.max_recommendations if settings else 10
        self.temperature = settings.ai_temperature if settings else None
        self.ai_timeout = settings.ai_request_timeout_ms / 1000 if settings else None

    async def generate(
        self, prompt: str, session_id: str, category_id: str
    ) -> PipelineResult:
        """Ask the AI client for recommendations, then run them through process()."""
        if self.ai_client is None:
            raise RecommendationError("No AI client configured",
                                      ErrorCode.CONFIGURATION_ERROR)
        _check_session_id(session_id)

        request = AIRecommendationRequest(
            prompt=prompt,
            max_recommendations=self.max_recommendations,
            temperature=self.temperature,
        )
        start = time.monotonic()
        try:
            raw = await asyncio.wait_for(
                self.ai_client.generate_recommendations(request), timeout=self.ai_timeout)
        except Exception as e:
            raise classify_error(e, {"stage": "ai_request", "session_id": session_id}) from e
        ai_ms = _elapsed_ms(start)

        result = await self.process(raw, session_id, category_id)
        result.durations_ms["ai_request"] = ai_ms
        return result

    async def process(
        self, raw_response: Any, session_id: str, category_id: str
    ) -> PipelineResult:
        _check_session_id(session_id)
        durations: dict[str, int] = {}
        log_ctx = {"session_id": session_id, "category_id": category_id}

        # 1. Analyze
        start = time.monotonic()
        analysis = self.analyzer.analyze(raw_response)
        durations["analysis"] = _elapsed_ms(start)

        if not analysis.is_valid:
            logger.warning(
                f"AI response rejected (quality {analysis.quality_score:.2f})",
                extra={**log_ctx, "issue_codes": analysis.issue_codes()},
            )
            raise RecommendationError.ai_response_invalid(
                "analysis failed",
                session_id=session_id,
                quality_score=analysis.quality_score,
                errors=[i.model_dump(mode="json") for i in analysis.errors],
            )

        # 2. Map
        start = time.monotonic()
        matches = await self._map_items(analysis.normalized_items, category_id, log_ctx)
        durations["mapping"] = _elapsed_ms(start)

        # 3. Statistics
        statistics = self.mapper.get_matching_statistics(matches)
        logger.info(
            f"Mapped {statistics.successful_matches}/{statistics.total_attempts} "
            f"recommendations ({statistics.fallback_matches} via fallback)",
            extra={**log_ctx, **statistics.model_dump()},
        )

        # 4. Records
        records = build_records(session_id, analysis.normalized_items, matches)
        if not records:
            raise RecommendationError.no_valid_recommendations(
                session_id, category_id=category_id,
                total_attempts=statistics.total_attempts)

        # 5. Persist
        saved = False
        if self.saver is not None:
            start = time.monotonic()
            await self.saver.save_recommendations(records)
            durations["save"] = _elapsed_ms(start)
            saved = True

        return PipelineResult(
            analysis=analysis,
            matches=matches,
            statistics=statistics,
            records=records,
            saved=saved,
            durations_ms=durations,
        )

    async def _map_items(
        self,
        items: list[RecommendationCandidate],
        category_id: str,
        log_ctx: dict[str, Any],
    ) -> list[Optional[ProductMatch]]:
        matches: list[Optional[ProductMatch]] = []
        for index, item in enumerate(items):
            try:
                match = await self.mapper.map_with_confidence_evaluation(item, category_id)
            except Exception as e:
                logger.exception(
                    f"Product mapping failed for {item.product_name!r}: {e}",
                    extra={**log_ctx, "item_index": index},
                )
                match = None
            matches.append(match)
        return matches


def build_records(
    session_id: str,
    items: list[RecommendationCandidate],
    matches: list[Optional[ProductMatch]],
) -> list[RecommendationRecord]:
    """One record per matched item; ranks are contiguous in AI order."""
    records: list[RecommendationRecord] = []
    for item, match in zip(items, matches):
        if match is None:
            continue
        records.append(RecommendationRecord(
            session_id=session_id,
            product_id=match.product_id,
            rank=len(records) + 1,
            score=item.score,
            reason=item.reason,
        ))
    return records


def _check_session_id(session_id: str) -> None:
    if (not isinstance(session_id, str) or len(session_id) > 50
            or not re.fullmatch(SESSION_ID_PATTERN, session_id)):
        raise RecommendationError.invalid_session_id(session_id)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
