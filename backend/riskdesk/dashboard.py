"""Security dashboard aggregations: posture counters, flagged list, patterns, incidents."""

import logging
from collections import Counter
from datetime import date, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .directory import read_users
from .models import (
    BLOCKING_STATUSES,
    ActivityLog,
    Finding,
    FlaggedTransaction,
    FlaggedTransactions,
    IncidentReport,
    IncidentStatus,
    PatternSummary,
    PostureSummary,
    RiskLevel,
    SecurityIncident,
)
from .risk.features import normalize_snapshot
from .risk.policy import DEFAULT_POLICY, RiskPolicy
from .triage import AnalysisError

log = logging.getLogger(__name__)

PATTERN_DESCRIPTIONS = {
    "multiple_failed_transactions": "Several failed transactions from one user",
    "rapid_failures": "Failures clustered inside one hour",
    "large_amount": "Unusually large transaction amount",
    "failed_large_transaction": "Large transaction that failed",
    "rapid_transactions": "Transactions in quick succession",
    "velocity_check": "Transaction velocity above the allowed rate",
    "high_failure_rate": "Most of the user's transactions fail",
}

_LEVEL_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


def summarize_posture(
    transactions: Iterable[Any],
    users: Iterable[Any] = (),
    policy: RiskPolicy = DEFAULT_POLICY,
) -> PostureSummary:
    """Compute system-wide security counters for a snapshot.

    Incident and compliance figures are coarse proxies recomputed on every
    call; they carry no incident identity.
    """
    try:
        records, skipped = normalize_snapshot(transactions)

        failed = [tx for tx in records if tx.is_failed]
        flagged = len(failed)
        high_risk = sum(1 for tx in failed if tx.amount > policy.posture_high_risk_amount)

        blocked = sum(1 for user in read_users(users) if user.status in BLOCKING_STATUSES)

        if flagged == 0:
            compliance = 100
        else:
            compliance = max(policy.compliance_floor, 100 - flagged)
        compliance = max(0, min(100, compliance))
    except Exception as exc:
        log.exception("Posture summary failed")
        raise AnalysisError(f"Posture summary failed: {exc}") from exc

    return PostureSummary(
        flagged_transactions=flagged,
        high_risk_transactions=high_risk,
        active_incidents=flagged // policy.incidents_per_flagged,
        critical_incidents=high_risk // policy.critical_incidents_per_high_risk,
        pending_review=flagged // policy.review_per_flagged,
        blocked_users=blocked,
        policy_compliance=compliance,
        skipped_records=skipped,
    )


def flag_failed_transactions(
    transactions: Iterable[Any],
    limit: Optional[int] = None,
    policy: RiskPolicy = DEFAULT_POLICY,
) -> FlaggedTransactions:
    """Risk-tier every failed transaction by amount for the review queue.

    ``limit`` is the page size the snapshot was fetched with. It is echoed
    back, never applied: the caller already bounded the snapshot.
    """
    records, skipped = normalize_snapshot(transactions)
    failed = [tx for tx in records if tx.is_failed]

    flagged: list[FlaggedTransaction] = []
    for tx in failed:
        flags: list[str] = []
        if tx.amount > policy.tier_critical_amount:
            level, score = RiskLevel.CRITICAL, 90
            flags.append("large_amount")
        elif tx.amount > policy.tier_high_amount:
            level, score = RiskLevel.HIGH, 75
            flags.append("significant_amount")
        elif tx.amount > policy.tier_medium_amount:
            level, score = RiskLevel.MEDIUM, 50
            flags.append("moderate_amount")
        else:
            level, score = RiskLevel.LOW, 25

        if tx.error_message:
            flags.append("has_error")

        user = tx.user
        flagged.append(FlaggedTransaction(
            transaction_id=tx.id,
            reference=tx.display_reference,
            actor_id=tx.actor_id,
            user_email=user.email if user else None,
            user_phone=user.phone if user else None,
            amount=tx.amount,
            currency=tx.currency,
            type=tx.type,
            mode=tx.mode,
            status=tx.status,
            risk_level=level,
            risk_score=score,
            flags=flags,
            reason=tx.error_message or "Transaction failed",
            ip=tx.metadata.ip_address,
            location=tx.metadata.location or "Unknown",
            device=tx.metadata.device or "Unknown",
            created_at=tx.created_at,
        ))
    return FlaggedTransactions(transactions=flagged, skipped_records=skipped, snapshot_limit=limit)


def summarize_patterns(findings: Iterable[Finding]) -> list[PatternSummary]:
    """Count findings per flag, most frequent first."""
    counts: Counter[str] = Counter()
    levels: dict[str, RiskLevel] = {}

    for finding in findings:
        for flag in finding.flags:
            counts[flag] += 1
            prev = levels.get(flag)
            if prev is None or _LEVEL_RANK[finding.risk_level] > _LEVEL_RANK[prev]:
                levels[flag] = finding.risk_level

    patterns = [
        PatternSummary(
            pattern=flag,
            description=PATTERN_DESCRIPTIONS.get(flag, flag.replace("_", " ").capitalize()),
            risk_level=levels[flag],
            count=count,
        )
        for flag, count in counts.items()
    ]
    patterns.sort(key=lambda p: (-p.count, p.pattern))
    return patterns


def _is_security_event(entry: ActivityLog, policy: RiskPolicy) -> bool:
    if entry.category == "SECURITY" or entry.status == "FAILED":
        return True
    action = entry.action or ""
    return any(marker in action for marker in policy.security_action_markers)


def _incident_severity(entry: ActivityLog, policy: RiskPolicy) -> RiskLevel:
    action = entry.action or ""
    if "BRUTE_FORCE" in action or entry.status == "FAILED":
        return RiskLevel.CRITICAL
    if any(marker in action for marker in policy.high_severity_markers):
        return RiskLevel.HIGH
    return RiskLevel.MEDIUM


def summarize_incidents(
    logs: Iterable[Any],
    policy: RiskPolicy = DEFAULT_POLICY,
) -> IncidentReport:
    """Group security-relevant activity-log entries into incidents.

    Entries sharing an action on the same UTC day form one incident; the first
    entry seen sets its identity, severity and status, later ones only bump
    ``affected_users`` and add new IP addresses.
    """
    skipped = 0
    incidents: dict[tuple[str, date], SecurityIncident] = {}

    for raw in logs:
        try:
            entry = ActivityLog.model_validate(raw)
        except ValidationError:
            skipped += 1
            continue
        if not _is_security_event(entry, policy):
            continue

        key = (entry.action or "", entry.created_at.astimezone(timezone.utc).date())
        incident = incidents.get(key)
        if incident is None:
            action = entry.action or "unknown"
            incidents[key] = SecurityIncident(
                id=entry.id,
                type=action.lower(),
                severity=_incident_severity(entry, policy),
                status=IncidentStatus.RESOLVED if entry.status == "SUCCESS" else IncidentStatus.ACTIVE,
                description=entry.description or "Security event",
                ip_addresses=[entry.ip_address] if entry.ip_address else [],
                location=entry.metadata.get("location") or "Unknown",
                action=action,
                created_at=entry.created_at,
                metadata=entry.metadata,
            )
            continue

        incident.affected_users += 1
        if entry.ip_address and entry.ip_address not in incident.ip_addresses:
            incident.ip_addresses.append(entry.ip_address)

    if skipped:
        log.warning(f"Skipped {skipped} unreadable activity-log entry(ies)")

    return IncidentReport(
        incidents=list(incidents.values())[: policy.max_incidents],
        skipped_records=skipped,
    )
