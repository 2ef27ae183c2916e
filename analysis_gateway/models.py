"""Request, result and client-profile models for the advisory analysis gateway."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ErrorCategory(str, Enum):
    """Closed taxonomy of gateway failures."""

    TIMEOUT = "timeout"
    DNS = "dns"
    CONNECTION = "connection"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    NETWORK = "network"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """How strongly a failure should stop the caller."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Provenance(str, Enum):
    """How a recovered document was obtained."""

    CLEAN = "clean"
    REPAIRED = "repaired"
    FALLBACK = "fallback"


class ErrorClassification(BaseModel):
    """Deterministic classification of a failed call."""

    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    severity: Severity
    suggested_action: str

    @property
    def blocks_caller(self) -> bool:
        """Return True if the caller should stop rather than retry."""
        return self.severity in (Severity.HIGH, Severity.CRITICAL)

    @property
    def retryable(self) -> bool:
        """Return True if a caller-owned backoff and retry is appropriate."""
        return self.category in (ErrorCategory.RATE_LIMIT, ErrorCategory.SERVER)


class RecoveredDocument(BaseModel):
    """A structured object recovered from provider text."""

    value: Any
    provenance: Provenance
    attempts: List[str] = Field(default_factory=list)


class AnalysisRequest(BaseModel):
    """A single outbound analysis request. Never persisted."""

    id: str = Field(default_factory=lambda: "req-{}".format(uuid.uuid4().hex[:12]))
    system_prompt: str
    user_message: str
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AnalysisResult(BaseModel):
    """Outcome of a dispatch, successful or not."""

    success: bool
    content: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    request_id: str
    request_time_ms: float = 0.0
    error: Optional[str] = None
    error_classification: Optional[ErrorClassification] = None
    document: Optional[RecoveredDocument] = None
    diagnostics: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _failure_carries_classification(self) -> "AnalysisResult":
        if not self.success:
            if self.error_classification is None:
                raise ValueError("Failed results must carry an error classification")
            if self.content is not None:
                raise ValueError("Failed results must not carry content")
        return self


class AnalysisCall(BaseModel):
    """Body of a direct analysis call."""

    system_prompt: str = Field(..., min_length=1)
    user_message: str = Field(..., min_length=1)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    expect_json: bool = False


class DiagnosticCallResult(BaseModel):
    """Outcome of the operator-triggered test call."""

    success: bool
    request_id: str
    latency_ms: float
    response: Optional[str] = None
    error: Optional[str] = None
    category: Optional[ErrorCategory] = None


class DebtEntry(BaseModel):
    """A single loan or credit line held by the client."""

    model_config = ConfigDict(frozen=True)

    type: str
    emi: float = Field(default=0.0, ge=0)
    outstanding: float = Field(default=0.0, ge=0)
    interest_rate: float = Field(default=0.0, ge=0)
    lender: Optional[str] = None
    remaining_tenure_years: Optional[float] = None


class AssetBuckets(BaseModel):
    """Client holdings grouped by asset class."""

    model_config = ConfigDict(frozen=True)

    cash: float = Field(default=0.0, ge=0)
    equity: float = Field(default=0.0, ge=0)
    fixed_income: float = Field(default=0.0, ge=0)
    real_estate: float = Field(default=0.0, ge=0)
    other: float = Field(default=0.0, ge=0)


class Goal(BaseModel):
    """A financial goal with a target amount and year."""

    model_config = ConfigDict(frozen=True)

    name: str
    target_amount: float = Field(..., ge=0)
    target_year: int
    priority: str = "Medium"


class ClientFinancialProfile(BaseModel):
    """Read-only client financial data supplied by the caller."""

    model_config = ConfigDict(frozen=True)

    name: str = "Not provided"
    age: Optional[int] = None
    occupation: Optional[str] = None
    risk_tolerance: Optional[str] = None
    monthly_income: float = Field(default=0.0, ge=0)
    monthly_expenses: float = Field(default=0.0, ge=0)
    debts: List[DebtEntry] = Field(default_factory=list)
    assets: AssetBuckets = Field(default_factory=AssetBuckets)
    goals: List[Goal] = Field(default_factory=list)


class DebtStrategyCall(BaseModel):
    """Body of a debt-strategy analysis call."""

    profile: ClientFinancialProfile


class GoalAnalysisCall(BaseModel):
    """Body of a goal analysis call."""

    profile: ClientFinancialProfile
    reference_year: Optional[int] = Field(
        default=None, description="Year goal horizons are measured from"
    )


class PlanSnapshot(BaseModel):
    """One stored financial plan, as presented for comparison."""

    plan_type: str = "general"
    version: Optional[int] = None
    created_at: Optional[str] = None
    status: Optional[str] = None
    key_metrics: Dict[str, Any] = Field(default_factory=dict)
    advisor_key_points: List[str] = Field(default_factory=list)
    ai_recommendation: Optional[str] = None
    client_profile: Optional[ClientFinancialProfile] = None


class PlanComparisonCall(BaseModel):
    """Body of a plan comparison call."""

    plan_a: PlanSnapshot
    plan_b: PlanSnapshot
    reference_year: Optional[int] = Field(
        default=None, description="Year goal horizons are measured from"
    )


class ErrorDetail(BaseModel):
    """Structured error detail."""

    type: str
    message: str


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail
    request_id: Optional[str] = None
