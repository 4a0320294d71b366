"""Unit tests for recommendation persistence and its validation rules."""

from unittest.mock import AsyncMock

import asyncpg
import pytest

from errors import ErrorCode, RecommendationError
from models import RecommendationRecord, SessionStatus
from recommendation_saver import RecommendationSaver
from repository import RecommendationStore


def _record(product_id="p-iphone15", rank=1, session_id="session-1"):
    return RecommendationRecord(
        session_id=session_id, product_id=product_id, rank=rank,
        score=0.8, reason="Fits the stated budget and needs",
    )


def _records():
    return [_record("p-iphone15", 1), _record("p-galaxy", 2)]


@pytest.mark.asyncio
async def test_save_recommendations(store):
    saver = RecommendationSaver(store)

    saved = await saver.save_recommendations(_records())

    assert saved == 2
    assert await saver.get_recommendation_count("session-1") == 2
    assert await saver.check_existing_recommendations("session-1") is True


@pytest.mark.asyncio
async def test_check_existing_without_recommendations(store):
    assert await RecommendationSaver(store).check_existing_recommendations("session-1") is False


@pytest.mark.asyncio
async def test_empty_batch_is_rejected(store):
    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).save_recommendations([])

    assert exc.value.code == ErrorCode.INVALID_REQUEST_DATA


@pytest.mark.asyncio
async def test_mixed_sessions_are_rejected(store):
    records = [_record(rank=1), _record(rank=2, session_id="session-open")]

    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).save_recommendations(records)

    assert exc.value.code == ErrorCode.INVALID_REQUEST_DATA
    assert exc.value.context["session_ids"] == ["session-1", "session-open"]


@pytest.mark.asyncio
async def test_existing_recommendations_are_rejected(store):
    saver = RecommendationSaver(store)
    await saver.save_recommendations(_records())

    with pytest.raises(RecommendationError) as exc:
        await saver.save_recommendations(_records())

    assert exc.value.code == ErrorCode.DUPLICATE_RECOMMENDATION
    assert await saver.get_recommendation_count("session-1") == 2


@pytest.mark.asyncio
async def test_unknown_session_is_rejected(store):
    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).save_recommendations(
            [_record(session_id="session-missing")])

    assert exc.value.code == ErrorCode.DATA_NOT_FOUND
    assert exc.value.context["resource"] == "Session"


@pytest.mark.asyncio
async def test_incomplete_session_is_rejected(store):
    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).save_recommendations(
            [_record(session_id="session-open")])

    assert exc.value.code == ErrorCode.SESSION_NOT_COMPLETED
    assert exc.value.context["status"] == SessionStatus.IN_PROGRESS.value


@pytest.mark.asyncio
async def test_unknown_products_are_rejected(store):
    records = [_record("p-iphone15", 1), _record("p-ghost", 2)]

    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).save_recommendations(records)

    assert exc.value.code == ErrorCode.DATA_NOT_FOUND
    assert exc.value.context["missing_product_ids"] == ["p-ghost"]
    assert store.recommendations == {}


@pytest.mark.asyncio
async def test_duplicate_ranks_are_rejected(store):
    records = [_record("p-iphone15", 1), _record("p-galaxy", 1)]

    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).save_recommendations(records)

    assert exc.value.code == ErrorCode.INVALID_REQUEST_DATA
    assert exc.value.context["duplicate_ranks"] == [1]


@pytest.mark.asyncio
async def test_insert_failure_is_classified():
    store = AsyncMock(spec=RecommendationStore)
    store.count_for_session.return_value = 0
    store.get_session_status.return_value = SessionStatus.COMPLETED
    store.existing_product_ids.return_value = {"p-iphone15", "p-galaxy"}
    store.insert_recommendations.side_effect = asyncpg.exceptions.UniqueViolationError(
        "duplicate key value")

    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).save_recommendations(_records())

    assert exc.value.code == ErrorCode.DATABASE_TRANSACTION_FAILED
    assert exc.value.context["operation"] == "save"
    assert exc.value.context["session_id"] == "session-1"


@pytest.mark.asyncio
async def test_lookup_failure_is_classified():
    store = AsyncMock(spec=RecommendationStore)
    store.count_for_session.side_effect = ConnectionRefusedError()

    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).check_existing_recommendations("session-1")

    assert exc.value.code == ErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_delete_recommendations(store):
    saver = RecommendationSaver(store)
    await saver.save_recommendations(_records())

    assert await saver.delete_recommendations("session-1") == 2
    assert await saver.get_recommendation_count("session-1") == 0


@pytest.mark.asyncio
async def test_replace_recommendations(store):
    saver = RecommendationSaver(store)
    await saver.save_recommendations(_records())

    replaced = await saver.replace_recommendations("session-1", [_record("p-pixel", 1)])

    assert replaced == 1
    assert [r.product_id for r in store.recommendations["session-1"]] == ["p-pixel"]


@pytest.mark.asyncio
async def test_replace_rejects_foreign_records(store):
    with pytest.raises(RecommendationError) as exc:
        await RecommendationSaver(store).replace_recommendations(
            "session-open", [_record()])

    assert exc.value.code == ErrorCode.INVALID_REQUEST_DATA
