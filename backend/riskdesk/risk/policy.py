"""Heuristic thresholds and score constants for the triage engine."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from ..models import RiskLevel


class RiskPolicy(BaseModel):
    """Immutable policy passed into the engine.

    All values are fixed policy constants, not derived from the data. The
    posture divisors are coarse dashboard proxies carried over as-is; treat
    them as labels, not business logic.
    """

    model_config = ConfigDict(frozen=True)

    # Failure burst
    failure_burst_min_failures: int = 5
    failure_burst_window: timedelta = timedelta(hours=1)
    failure_burst_score: int = 85

    # Large failed amount
    large_failed_amount: Decimal = Decimal("10000000")
    large_failed_score: int = 90

    # Velocity
    velocity_window_size: int = 5
    velocity_max_span: timedelta = timedelta(minutes=5)
    velocity_score: int = 75

    # High failure rate
    failure_rate_min_transactions: int = 10
    failure_rate_threshold: float = 0.7
    failure_rate_score: int = 80

    # Score -> level bucketing (lower bounds, inclusive)
    critical_min_score: int = 90
    high_min_score: int = 70
    medium_min_score: int = 40

    # Posture summary
    posture_high_risk_amount: Decimal = Decimal("1000000")
    incidents_per_flagged: int = 10
    critical_incidents_per_high_risk: int = 5
    review_per_flagged: int = 3
    compliance_floor: int = 85

    # Flagged-transaction amount tiers
    tier_critical_amount: Decimal = Decimal("5000000")
    tier_high_amount: Decimal = Decimal("1000000")
    tier_medium_amount: Decimal = Decimal("500000")

    # Security incidents
    max_incidents: int = 20
    security_action_markers: tuple[str, ...] = ("BLOCK", "SUSPEND", "FAILED", "SECURITY")
    high_severity_markers: tuple[str, ...] = ("BLOCK", "SUSPEND")

    def level_for(self, score: int) -> RiskLevel:
        if score >= self.critical_min_score:
            return RiskLevel.CRITICAL
        if score >= self.high_min_score:
            return RiskLevel.HIGH
        if score >= self.medium_min_score:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW


DEFAULT_POLICY = RiskPolicy()
