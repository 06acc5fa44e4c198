from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class TransactionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


BLOCKING_STATUSES = frozenset({"SUSPENDED", "BLOCKED"})


class TransactionMetadata(BaseModel):
    """Typed view over the metadata bag; unknown keys stay in the extra map."""

    model_config = ConfigDict(extra="allow", frozen=True)

    ip_address: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ipAddress", "ip_address", "ip")
    )
    location: Optional[str] = None
    device: Optional[str] = None

    @property
    def extensions(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class TransactionUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("firstName", "first_name")
    )
    last_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("lastName", "last_name")
    )

    @property
    def display_name(self) -> Optional[str]:
        if not self.first_name:
            return None
        return f"{self.first_name} {self.last_name or ''}".strip()


class TransactionRecord(BaseModel):
    """One transaction from the snapshot. Never mutated by the engine."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    reference: Optional[str] = None
    actor_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("actorId", "userId", "actor_id")
    )
    amount: Decimal = Field(..., ge=0, allow_inf_nan=False)
    currency: str = "UGX"
    type: Optional[str] = None
    mode: Optional[str] = None
    status: TransactionStatus
    created_at: datetime = Field(..., validation_alias=AliasChoices("createdAt", "created_at"))
    error_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("errorMessage", "error_message")
    )
    user: Optional[TransactionUser] = None
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def display_reference(self) -> str:
        return self.reference or self.id

    @property
    def is_failed(self) -> bool:
        return self.status is TransactionStatus.FAILED


class UserRecord(BaseModel):
    """Directory entry for an actor."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: str = "ACTIVE"
    suspended_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("suspendedAt", "suspended_at")
    )
    blocked_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("blockedAt", "blocked_at")
    )

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def block_timestamp(self) -> Optional[datetime]:
        return self.suspended_at or self.blocked_at


class Finding(BaseModel):
    transaction_id: str
    actor_id: str
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    flags: list[str]
    reason: str

    # Display fields copied from the originating record
    reference: str
    amount: Decimal
    currency: str
    type: Optional[str] = None
    mode: Optional[str] = None
    status: TransactionStatus
    created_at: datetime
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
    user_name: Optional[str] = None
    ip: Optional[str] = None
    location: Optional[str] = None
    device: Optional[str] = None


class ActorRiskProfile(BaseModel):
    actor_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    risk_score: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    flags: list[str] = Field(default_factory=list)
    suspicious_transaction_count: int = 0
    failed_transaction_count: int = 0
    total_flagged_amount: Decimal = Decimal("0")
    last_suspicious_activity_at: datetime
    transactions: list[Finding] = Field(default_factory=list)
    is_blocked: bool = False
    blocked_at: Optional[datetime] = None


class AnalysisResult(BaseModel):
    profiles: list[ActorRiskProfile]
    skipped_records: int = 0
    snapshot_size: int = 0
    snapshot_limit: Optional[int] = None
    directory_warning: bool = False
    warnings: list[str] = Field(default_factory=list)


class PostureSummary(BaseModel):
    flagged_transactions: int = 0
    high_risk_transactions: int = 0
    active_incidents: int = 0
    critical_incidents: int = 0
    pending_review: int = 0
    blocked_users: int = 0
    policy_compliance: int = 100
    skipped_records: int = 0


class FlaggedTransaction(BaseModel):
    transaction_id: str
    reference: str
    actor_id: str
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
    amount: Decimal
    currency: str
    type: Optional[str] = None
    mode: Optional[str] = None
    status: TransactionStatus
    risk_level: RiskLevel
    risk_score: int
    flags: list[str]
    reason: str
    ip: Optional[str] = None
    location: str = "Unknown"
    device: str = "Unknown"
    created_at: datetime


class PatternSummary(BaseModel):
    pattern: str
    description: str
    risk_level: RiskLevel
    count: int


class ErrorOut(BaseModel):
    detail: str


class FlaggedTransactions(BaseModel):
    transactions: list[FlaggedTransaction]
    skipped_records: int = 0
    snapshot_limit: Optional[int] = None


class IncidentStatus(str, Enum):
    ACTIVE = "active"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ActivityLog(BaseModel):
    """One audit-log entry as written by the backend's activity logger."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("_id", "id"))
    action: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    ip_address: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ipAddress", "ip_address")
    )
    created_at: datetime = Field(..., validation_alias=AliasChoices("createdAt", "created_at"))
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("action", "category", "status", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper() or None
        return value

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class SecurityIncident(BaseModel):
    id: str
    type: str
    severity: RiskLevel
    status: IncidentStatus
    description: str
    affected_users: int = 1
    ip_addresses: list[str] = Field(default_factory=list)
    location: str = "Unknown"
    action: str
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class IncidentReport(BaseModel):
    incidents: list[SecurityIncident]
    skipped_records: int = 0
