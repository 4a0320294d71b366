"""
Product Recommendation Mapper — Recommendation Saver

Validates a batch of mapped recommendations against session and catalog
state, then persists it in a single transaction.

Validation order (first failure wins):
  1. non-empty batch, single session id
  2. no recommendations already stored for the session
  3. session exists and is COMPLETED
  4. every product id exists
  5. ranks are unique
"""
from __future__ import annotations
import logging
from collections import Counter
from typing import Sequence

from errors import RecommendationError, classify_error
from models import RecommendationRecord, SessionStatus
from repository import RecommendationStore

logger = logging.getLogger(__name__)


class RecommendationSaver:

    def __init__(self, store: RecommendationStore):
        self.store = store

    async def check_existing_recommendations(self, session_id: str) -> bool:
        try:
            return await self.store.count_for_session(session_id) > 0
        except Exception as e:
            raise classify_error(e, {"operation": "check_existing",
                                     "session_id": session_id}) from e

    async def get_recommendation_count(self, session_id: str) -> int:
        try:
            return await self.store.count_for_session(session_id)
        except Exception as e:
            raise classify_error(e, {"operation": "count",
                                     "session_id": session_id}) from e

    async def save_recommendations(self, records: Sequence[RecommendationRecord]) -> int:
        """Validate and insert; returns the number of rows written."""
        records = list(records)
        session_id = self._single_session_id(records)

        logger.debug(f"Saving {len(records)} recommendations for session {session_id}")
        try:
            if await self.store.count_for_session(session_id) > 0:
                raise RecommendationError.duplicate_recommendation(session_id)

            await self._validate_session(session_id)
            await self._validate_products(records)
            _validate_ranks(records)

            await self.store.insert_recommendations(records)
        except Exception as e:
            raise classify_error(e, {"operation": "save",
                                     "session_id": session_id}) from e

        logger.info(f"Saved {len(records)} recommendations for session {session_id}")
        return len(records)

    async def delete_recommendations(self, session_id: str) -> int:
        try:
            deleted = await self.store.delete_for_session(session_id)
        except Exception as e:
            raise classify_error(e, {"operation": "delete",
                                     "session_id": session_id}) from e
        logger.info(f"Deleted {deleted} recommendations for session {session_id}")
        return deleted

    async def replace_recommendations(
        self, session_id: str, records: Sequence[RecommendationRecord]
    ) -> int:
        """Swap the session's recommendations atomically; skips the duplicate check."""
        records = list(records)
        if self._single_session_id(records) != session_id:
            raise RecommendationError.invalid_request_data(
                "records belong to a different session", session_id=session_id)

        try:
            await self._validate_session(session_id)
            await self._validate_products(records)
            _validate_ranks(records)

            await self.store.replace_for_session(session_id, records)
        except Exception as e:
            raise classify_error(e, {"operation": "replace",
                                     "session_id": session_id}) from e

        logger.info(f"Replaced recommendations for session {session_id} ({len(records)} rows)")
        return len(records)

    # ----------------------------------------------------------
    # Validation
    # ----------------------------------------------------------

    @staticmethod
    def _single_session_id(records: list[RecommendationRecord]) -> str:
        if not records:
            raise RecommendationError.invalid_request_data("no recommendations to save")
        session_ids = {r.session_id for r in records}
        if len(session_ids) > 1:
            raise RecommendationError.invalid_request_data(
                "all recommendations must belong to one session",
                session_ids=sorted(session_ids))
        return session_ids.pop()

    async def _validate_session(self, session_id: str) -> None:
        status = await self.store.get_session_status(session_id)
        if status is None:
            raise RecommendationError.data_not_found("Session", session_id)
        if status != SessionStatus.COMPLETED:
            raise RecommendationError.session_not_completed(session_id, status.value)

    async def _validate_products(self, records: list[RecommendationRecord]) -> None:
        product_ids = list(dict.fromkeys(r.product_id for r in records))
        existing = await self.store.existing_product_ids(product_ids)
        missing = [pid for pid in product_ids if pid not in existing]
        if missing:
            raise RecommendationError.data_not_found(
                "Product", ", ".join(missing), missing_product_ids=missing)


def _validate_ranks(records: list[RecommendationRecord]) -> None:
    duplicates = sorted(rank for rank, n in Counter(r.rank for r in records).items() if n > 1)
    if duplicates:
        raise RecommendationError.invalid_request_data(
            f"duplicate ranks {duplicates}", duplicate_ranks=duplicates)
