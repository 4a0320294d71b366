"""
Product Recommendation Mapper — AI Response Analyzer

Responsibilities:
  1. Basic structure check of the raw (untyped) AI payload
  2. Tolerant field extraction under alias names, with coercion
  3. Schema validation of the normalized items (all violations collected)
  4. Quality analysis (advisory warnings)
  5. Metadata and quality score computation

The analyzer never raises: every failure mode becomes an issue on the
returned ResponseAnalysisResult.
"""
from __future__ import annotations
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from config import Settings
from models import (
    IssueSeverity, PriceRange, RecommendationCandidate, ResponseAnalysisResult,
    ResponseIssue, ResponseMetadata, ScoreDistribution,
)

logger = logging.getLogger(__name__)

MAX_FEATURES = 20


# ============================================================
# Configuration
# ============================================================

@dataclass
class AnalyzerConfig:
    """Thresholds for validation, quality warnings and scoring."""
    max_recommendations: int = 10

    # Quality warnings
    min_product_name_length: int = 3
    min_reason_length: int = 20
    low_score_threshold: float = 0.1

    # Quality score
    error_penalty: float = 0.3
    warning_penalty: float = 0.1
    min_recommendation_count: int = 3
    few_recommendations_penalty: float = 0.2
    issue_weight: float = 0.7
    item_score_weight: float = 0.3
    valid_quality_threshold: float = 0.5

    # Score distribution buckets
    high_score: float = 0.8
    medium_score: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> AnalyzerConfig:
        return cls(max_recommendations=settings.max_recommendations)


DEFAULT_CONFIG = AnalyzerConfig()


# ============================================================
# Coercion Helpers
# ============================================================

def _is_present(value: Any) -> bool:
    """Falsy values (None, False, 0, NaN, blank strings) fall through to the next alias."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (int, float)):
        return value == value and value != 0
    return True


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def to_number(value: Any) -> Optional[float]:
    """Parse a finite-or-infinite number; None when not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            num = float(value)
        except OverflowError:
            # ints beyond float range
            num = math.inf if value > 0 else -math.inf
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(num) else num


def to_score(value: Any) -> float:
    num = to_number(value)
    if num is None:
        return 0.0
    return max(0.0, min(1.0, num))


def to_features(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        items = [to_text(v) for v in value]
    elif isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    else:
        return []
    return [item for item in items if item][:MAX_FEATURES]


def to_price_range(value: Any) -> Optional[PriceRange]:
    if not isinstance(value, Mapping):
        return None
    raw_min, raw_max = value.get("min"), value.get("max")
    low = to_number(raw_min) if _is_present(raw_min) else 0.0
    high = to_number(raw_max) if _is_present(raw_max) else 0.0
    if low is None or high is None:
        return None
    if not (math.isfinite(low) and math.isfinite(high)):
        return None
    if low < 0 or high < 0:
        return None
    # max < min is kept so schema validation reports it
    return PriceRange(min=low, max=high)


# ============================================================
# Field Extraction Rules
# ============================================================

@dataclass(frozen=True)
class FieldRule:
    """Ordered alias lookup for one canonical field."""
    field: str
    aliases: tuple[str, ...]
    coerce: Callable[[Any], Any]

    def extract(self, item: Mapping) -> Any:
        for alias in self.aliases:
            value = item.get(alias)
            if _is_present(value):
                return self.coerce(value)
        return self.coerce(None)


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule("product_name", ("productName", "product_name", "name"), to_text),
    FieldRule("reason", ("reason", "description", "explanation"), to_text),
    FieldRule("score", ("score", "confidence", "rating"), to_score),
    FieldRule("features", ("features", "tags", "attributes"), to_features),
    FieldRule("price_range", ("priceRange", "price_range", "price"), to_price_range),
)


def normalize_item(
    item: Any, index: int
) -> tuple[Optional[RecommendationCandidate], Optional[ResponseIssue]]:
    """Normalize one raw item. Returns (candidate, None) or (None, issue)."""
    if not isinstance(item, Mapping):
        return None, ResponseIssue(
            severity=IssueSeverity.ERROR,
            code="INVALID_ITEM",
            message=f"recommendations.{index}: item must be an object, "
                    f"got {type(item).__name__}",
            context={"index": index, "actual_type": type(item).__name__},
        )
    values = {rule.field: rule.extract(item) for rule in FIELD_RULES}
    return RecommendationCandidate(**values), None


# ============================================================
# Validation Schema
# ============================================================

class PriceRangeSchema(BaseModel):
    min: float = Field(ge=0)
    max: float = Field(ge=0)

    @field_validator("max")
    @classmethod
    def max_not_below_min(cls, v: float, info: ValidationInfo) -> float:
        low = info.data.get("min")
        if low is not None and v < low:
            raise ValueError("max must be greater than or equal to min")
        return v


class RecommendationItemSchema(BaseModel):
    product_name: str = Field(min_length=1, max_length=200)
    reason: str = Field(min_length=1, max_length=1000)
    score: float = Field(ge=0, le=1)
    features: list[str] = Field(max_length=MAX_FEATURES)
    price_range: Optional[PriceRangeSchema] = None

    @field_validator("product_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("product name must not be blank")
        return v

    @field_validator("features")
    @classmethod
    def features_not_empty_strings(cls, v: list[str]) -> list[str]:
        if any(not f for f in v):
            raise ValueError("features must not contain empty strings")
        return v


# ============================================================
# Analyzer
# ============================================================

class ResponseAnalyzer:
    """Validates, normalizes and scores a raw AI recommendation payload."""

    def __init__(self, config: AnalyzerConfig = DEFAULT_CONFIG):
        self.config = config

    def analyze(self, raw_response: Any) -> ResponseAnalysisResult:
        start = time.monotonic()

        structural = self._check_structure(raw_response)
        if structural:
            return self._failed(structural, start)

        try:
            issues: list[ResponseIssue] = []
            items, item_issues = self._normalize(raw_response)
            issues.extend(item_issues)
            issues.extend(self._validate(items))
            issues.extend(self._analyze_quality(items))

            metadata = self._metadata(items, start)
            quality = self._quality_score(items, issues)
            has_errors = any(i.severity == IssueSeverity.ERROR for i in issues)

            return ResponseAnalysisResult(
                is_valid=not has_errors
                and quality >= self.config.valid_quality_threshold,
                normalized_items=items,
                quality_score=quality,
                issues=issues,
                metadata=metadata,
            )
        except Exception as e:
            logger.exception("Response analysis failed")
            return self._failed([ResponseIssue(
                severity=IssueSeverity.ERROR,
                code="ANALYSIS_FAILED",
                message=f"Response analysis failed: {e}",
                context={"error_type": type(e).__name__},
            )], start)

    # ----------------------------------------------------------
    # Steps
    # ----------------------------------------------------------

    def _check_structure(self, raw: Any) -> list[ResponseIssue]:
        if raw is None:
            return [ResponseIssue(
                severity=IssueSeverity.ERROR,
                code="NULL_RESPONSE",
                message="Response is null",
            )]

        if not isinstance(raw, (Mapping, list, tuple)):
            actual = type(raw).__name__
            return [ResponseIssue(
                severity=IssueSeverity.ERROR,
                code="INVALID_TYPE",
                message=f"Invalid response type: expected object, got {actual}",
                context={"actual_type": actual},
            )]

        if isinstance(raw, Mapping) and not isinstance(
            raw.get("recommendations"), (list, tuple)
        ):
            return [ResponseIssue(
                severity=IssueSeverity.ERROR,
                code="MISSING_RECOMMENDATIONS",
                message="No 'recommendations' array and the response is not an array",
                context={"available_keys": [str(k) for k in raw.keys()]},
            )]

        return []

    def _normalize(
        self, raw: Any
    ) -> tuple[list[RecommendationCandidate], list[ResponseIssue]]:
        raw_items = raw if isinstance(raw, (list, tuple)) else raw["recommendations"]
        items: list[RecommendationCandidate] = []
        issues: list[ResponseIssue] = []
        for index, raw_item in enumerate(raw_items):
            candidate, issue = normalize_item(raw_item, index)
            if issue:
                issues.append(issue)
            else:
                items.append(candidate)
        return items, issues

    def _validate(self, items: list[RecommendationCandidate]) -> list[ResponseIssue]:
        issues: list[ResponseIssue] = []

        if not items:
            issues.append(_validation_issue(
                "recommendations", "at least one recommendation is required",
                "too_short"))
        elif len(items) > self.config.max_recommendations:
            issues.append(_validation_issue(
                "recommendations",
                f"at most {self.config.max_recommendations} recommendations are allowed",
                "too_long"))

        for index, item in enumerate(items):
            try:
                RecommendationItemSchema.model_validate(item.model_dump())
            except ValidationError as e:
                for err in e.errors():
                    path = ".".join(
                        ["recommendations", str(index)] + [str(p) for p in err["loc"]]
                    )
                    issues.append(_validation_issue(path, err["msg"], err["type"]))

        return issues

    def _analyze_quality(self, items: list[RecommendationCandidate]) -> list[ResponseIssue]:
        cfg = self.config
        issues: list[ResponseIssue] = []

        for index, item in enumerate(items):
            if len(item.product_name) < cfg.min_product_name_length:
                issues.append(_warning(
                    "SHORT_PRODUCT_NAME",
                    f"Product name is too short [{index}]: {item.product_name!r}",
                    index=index, product_name=item.product_name))
            if len(item.reason) < cfg.min_reason_length:
                issues.append(_warning(
                    "SHORT_REASON",
                    f"Reason is too short [{index}]: {item.reason!r}",
                    index=index, reason=item.reason))
            if item.score < cfg.low_score_threshold:
                issues.append(_warning(
                    "LOW_SCORE",
                    f"Score is too low [{index}]: {item.score}",
                    index=index, score=item.score))
            if not item.features:
                issues.append(_warning(
                    "NO_FEATURES",
                    f"No features provided [{index}]",
                    index=index))

        seen: set[str] = set()
        duplicates: list[str] = []
        for item in items:
            key = item.product_name.lower()
            if not key:
                continue
            if key in seen and key not in duplicates:
                duplicates.append(key)
            seen.add(key)

        if duplicates:
            issues.append(_warning(
                "DUPLICATE_PRODUCTS",
                f"Duplicate product names: {', '.join(duplicates)}",
                duplicates=duplicates))

        return issues

    def _metadata(
        self, items: list[RecommendationCandidate], start: float
    ) -> ResponseMetadata:
        scores = [item.score for item in items]
        cfg = self.config
        return ResponseMetadata(
            total_count=len(items),
            average_score=_mean(scores),
            score_distribution=ScoreDistribution(
                high=sum(1 for s in scores if s >= cfg.high_score),
                medium=sum(1 for s in scores if cfg.medium_score <= s < cfg.high_score),
                low=sum(1 for s in scores if s < cfg.medium_score),
            ),
            has_incomplete_data=any(
                not item.product_name or not item.reason or not item.features
                for item in items
            ),
            processing_time_ms=_elapsed_ms(start),
        )

    def _quality_score(
        self, items: list[RecommendationCandidate], issues: list[ResponseIssue]
    ) -> float:
        cfg = self.config
        errors = sum(1 for i in issues if i.severity == IssueSeverity.ERROR)
        warnings = sum(1 for i in issues if i.severity == IssueSeverity.WARNING)

        score = 1.0
        score -= errors * cfg.error_penalty
        score -= warnings * cfg.warning_penalty
        if len(items) < cfg.min_recommendation_count:
            score -= cfg.few_recommendations_penalty

        score = score * cfg.issue_weight + _mean([i.score for i in items]) * cfg.item_score_weight
        return max(0.0, min(1.0, score))

    def _failed(
        self, issues: list[ResponseIssue], start: float
    ) -> ResponseAnalysisResult:
        return ResponseAnalysisResult(
            is_valid=False,
            normalized_items=[],
            quality_score=0.0,
            issues=issues,
            metadata=ResponseMetadata(
                has_incomplete_data=True,
                processing_time_ms=_elapsed_ms(start),
            ),
        )


# ============================================================
# Helpers
# ============================================================

def _validation_issue(path: str, message: str, error_type: str) -> ResponseIssue:
    return ResponseIssue(
        severity=IssueSeverity.ERROR,
        code="VALIDATION_ERROR",
        message=f"{path}: {message}",
        context={"path": path, "type": error_type},
    )


def _warning(code: str, message: str, **context: Any) -> ResponseIssue:
    return ResponseIssue(
        severity=IssueSeverity.WARNING, code=code, message=message, context=context
    )


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
