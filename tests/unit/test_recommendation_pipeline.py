"""Unit tests for the end-to-end recommendation pipeline."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from config import Settings
from errors import ErrorCode, RecommendationError
from models import ProductMatch
from product_mapper import FALLBACK_REASON
from recommendation_pipeline import (
    AIRecommendationClient, RecommendationPipeline, build_records,
)
from recommendation_saver import RecommendationSaver
from response_analyzer import ResponseAnalyzer

SMARTPHONES = "smartphones"


def _raw_response():
    return {"recommendations": [
        {
            "productName": "iPhone 15 Pro",
            "reason": "Water resistant flagship within your budget",
            "score": 0.9,
            "features": ["防水"],
            "priceRange": {"min": 100000, "max": 200000},
        },
        {
            "product_name": "Galaxy S24 Ultra",
            "description": "Large display and waterproof body for outdoor use",
            "confidence": 0.7,
            "tags": "防水",
        },
        {
            "name": "Unknown Gadget",
            "explanation": "Something new that might suit your lifestyle",
            "rating": 0.6,
            "attributes": ["xyz"],
        },
    ]}


@pytest.fixture
def pipeline(mapper, store):
    return RecommendationPipeline(ResponseAnalyzer(), mapper, RecommendationSaver(store))


@pytest.mark.asyncio
async def test_process_maps_and_saves(pipeline, store):
    result = await pipeline.process(_raw_response(), "session-1", SMARTPHONES)

    assert result.analysis.is_valid is True
    assert [m.product_id for m in result.matches] == ["p-iphone15", "p-galaxy", "p-iphone15"]
    assert [(r.rank, r.product_id, r.score) for r in result.records] == [
        (1, "p-iphone15", 0.9),
        (2, "p-galaxy", 0.7),
        (3, "p-iphone15", 0.6),
    ]
    assert result.records[1].reason == "Large display and waterproof body for outdoor use"

    stats = result.statistics
    assert stats.total_attempts == 3
    assert stats.successful_matches == 3
    assert stats.high_confidence_matches == 1
    assert stats.fallback_matches == 2

    assert result.saved is True
    assert len(store.recommendations["session-1"]) == 3
    assert {"analysis", "mapping", "save"} <= set(result.durations_ms)


@pytest.mark.asyncio
async def test_process_without_saver(mapper):
    pipeline = RecommendationPipeline(ResponseAnalyzer(), mapper)

    result = await pipeline.process(_raw_response(), "session-1", SMARTPHONES)

    assert result.saved is False
    assert len(result.records) == 3
    assert "save" not in result.durations_ms


@pytest.mark.asyncio
async def test_invalid_response_is_rejected(pipeline, store):
    with pytest.raises(RecommendationError) as exc:
        await pipeline.process(None, "session-1", SMARTPHONES)

    assert exc.value.code == ErrorCode.AI_RESPONSE_INVALID
    assert [e["code"] for e in exc.value.context["errors"]] == ["NULL_RESPONSE"]
    assert store.recommendations == {}


@pytest.mark.asyncio
async def test_no_matches_raises(pipeline):
    with pytest.raises(RecommendationError) as exc:
        await pipeline.process(_raw_response(), "session-1", "unknown-category")

    assert exc.value.code == ErrorCode.NO_MATCHING_PRODUCTS


@pytest.mark.asyncio
async def test_item_failure_is_recorded_as_no_match(pipeline, mapper, caplog):
    raw = {"recommendations": _raw_response()["recommendations"][:2]}
    mapper.map_with_confidence_evaluation = AsyncMock(side_effect=[
        RuntimeError("catalog timeout"),
        ProductMatch(product_id="p-galaxy", confidence=0.8),
    ])

    with caplog.at_level(logging.ERROR):
        result = await pipeline.process(raw, "session-1", SMARTPHONES)

    assert result.matches[0] is None
    assert [(r.rank, r.product_id) for r in result.records] == [(1, "p-galaxy")]
    assert result.statistics.success_rate == 0.5
    assert "Product mapping failed" in caplog.text


@pytest.mark.asyncio
async def test_saver_errors_propagate(mapper):
    saver = AsyncMock(spec=RecommendationSaver)
    saver.save_recommendations.side_effect = RecommendationError.duplicate_recommendation(
        "session-1")
    pipeline = RecommendationPipeline(ResponseAnalyzer(), mapper, saver)

    with pytest.raises(RecommendationError) as exc:
        await pipeline.process(_raw_response(), "session-1", SMARTPHONES)

    assert exc.value.code == ErrorCode.DUPLICATE_RECOMMENDATION


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", ["bad id!", "", "s" * 51])
async def test_process_rejects_invalid_session_id(pipeline, store, session_id):
    with pytest.raises(RecommendationError) as exc:
        await pipeline.process(_raw_response(), session_id, SMARTPHONES)

    assert exc.value.code == ErrorCode.INVALID_SESSION_ID
    assert await store.count_for_session(session_id) == 0


def test_build_records_skips_unmatched():
    analysis = ResponseAnalyzer().analyze(_raw_response())
    matches = [None, ProductMatch(product_id="p-galaxy", confidence=0.4,
                                  match_reasons=[FALLBACK_REASON]), None]

    records = build_records("session-1", analysis.normalized_items, matches)

    assert [(r.rank, r.product_id) for r in records] == [(1, "p-galaxy")]


# ============================================================
# AI client integration
# ============================================================

@pytest.mark.asyncio
async def test_generate_builds_request_from_settings(mapper):
    client = AsyncMock(spec=AIRecommendationClient)
    client.generate_recommendations.return_value = _raw_response()
    pipeline = RecommendationPipeline(
        ResponseAnalyzer(), mapper, ai_client=client,
        settings=Settings(max_recommendations=5, ai_temperature=0.2),
    )

    result = await pipeline.generate("Recommend a waterproof phone", "session-1", SMARTPHONES)

    request = client.generate_recommendations.await_args.args[0]
    assert request.prompt == "Recommend a waterproof phone"
    assert request.max_recommendations == 5
    assert request.temperature == 0.2
    assert len(result.records) == 3
    assert "ai_request" in result.durations_ms


@pytest.mark.asyncio
async def test_generate_without_client(mapper):
    pipeline = RecommendationPipeline(ResponseAnalyzer(), mapper)

    with pytest.raises(RecommendationError) as exc:
        await pipeline.generate("prompt", "session-1", SMARTPHONES)

    assert exc.value.code == ErrorCode.CONFIGURATION_ERROR


@pytest.mark.asyncio
async def test_generate_classifies_client_errors(mapper):
    client = AsyncMock(spec=AIRecommendationClient)
    client.generate_recommendations.side_effect = TimeoutError()
    pipeline = RecommendationPipeline(ResponseAnalyzer(), mapper, ai_client=client)

    with pytest.raises(RecommendationError) as exc:
        await pipeline.generate("prompt", "session-1", SMARTPHONES)

    assert exc.value.code == ErrorCode.AI_REQUEST_TIMEOUT
    assert exc.value.context["stage"] == "ai_request"


@pytest.mark.asyncio
async def test_generate_times_out_slow_client(mapper):
    async def slow(request):
        await asyncio.sleep(1)

    client = AsyncMock(spec=AIRecommendationClient)
    client.generate_recommendations.side_effect = slow
    pipeline = RecommendationPipeline(
        ResponseAnalyzer(), mapper, ai_client=client,
        settings=Settings(ai_request_timeout_ms=10),
    )

    with pytest.raises(RecommendationError) as exc:
        await pipeline.generate("prompt", "session-1", SMARTPHONES)

    assert exc.value.code == ErrorCode.AI_REQUEST_TIMEOUT


@pytest.mark.asyncio
async def test_generate_rejects_bad_session_id_before_calling_client(mapper):
    client = AsyncMock(spec=AIRecommendationClient)
    pipeline = RecommendationPipeline(ResponseAnalyzer(), mapper, ai_client=client)

    with pytest.raises(RecommendationError) as exc:
        await pipeline.generate("prompt", "session 1", SMARTPHONES)

    assert exc.value.code == ErrorCode.INVALID_SESSION_ID
    client.generate_recommendations.assert_not_awaited()
