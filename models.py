"""
Product Recommendation Mapper — Core Pydantic Models
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

# ============================================================
# Enums
# ============================================================

class IssueSeverity(str, Enum):
    WARNING = "WARNING"
    ERROR = "ERROR"

class SessionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"

# ============================================================
# AI Response Models (normalizer output)
# ============================================================

class PriceRange(BaseModel):
    # max < min is representable on purpose; validation flags it later
    min: float
    max: float

class RecommendationCandidate(BaseModel):
    """One AI recommendation after alias extraction and coercion."""
    product_name: str = ""
    reason: str = ""
    score: float = 0.0
    features: list[str] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None

class ResponseIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: IssueSeverity
    code: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)

class ScoreDistribution(BaseModel):
    high: int = 0    # >= 0.8
    medium: int = 0  # 0.5 - 0.8
    low: int = 0     # < 0.5

class ResponseMetadata(BaseModel):
    total_count: int = 0
    average_score: float = 0.0
    score_distribution: ScoreDistribution = Field(default_factory=ScoreDistribution)
    has_incomplete_data: bool = True
    processing_time_ms: int = 0

class ResponseAnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    normalized_items: list[RecommendationCandidate] = Field(default_factory=list)
    quality_score: float = 0.0
    issues: list[ResponseIssue] = Field(default_factory=list)
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)

    @property
    def errors(self) -> list[ResponseIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[ResponseIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.WARNING]

    def issue_codes(self) -> list[str]:
        return [i.code for i in self.issues]

# ============================================================
# Catalog & Matching Models
# ============================================================

class CatalogProduct(BaseModel):
    """Read-only projection of a catalog row used for matching."""
    id: str
    name: str
    description: Optional[str] = None
    features_text: str = ""
    price: Optional[float] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None

class ProductMatch(BaseModel):
    product_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    match_reasons: list[str] = Field(default_factory=list)

class MatchingStatistics(BaseModel):
    total_attempts: int = 0
    successful_matches: int = 0
    high_confidence_matches: int = 0
    fallback_matches: int = 0
    success_rate: float = 0.0

# ============================================================
# Persistence & Collaborator Models
# ============================================================

SESSION_ID_PATTERN = r"^[a-zA-Z0-9_-]+$"

class RecommendationRecord(BaseModel):
    """A mapped recommendation ready for the recommendations table."""
    session_id: str = Field(min_length=1, max_length=50, pattern=SESSION_ID_PATTERN)
    product_id: str = Field(min_length=1, max_length=50)
    rank: int = Field(ge=1, le=100)
    score: float = Field(ge=0.0, le=1.0)
    reason: str = Field(min_length=1, max_length=1000)

class AIRecommendationRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=20000)
    max_recommendations: int = Field(ge=1, le=50)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
