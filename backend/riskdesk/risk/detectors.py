"""Risk detectors: failure burst, large failed amount, velocity, failure rate.

Each detector takes the snapshot grouped by actor and returns the findings it
raises. Detectors are independent and may flag the same transaction; overlaps
are merged later in scoring.
"""

from typing import Callable

from ..models import Finding, TransactionRecord
from .policy import RiskPolicy

GroupedTransactions = dict[str, list[TransactionRecord]]
Detector = Callable[[GroupedTransactions, RiskPolicy], list[Finding]]


def make_finding(
    tx: TransactionRecord,
    score: int,
    flags: list[str],
    reason: str,
    policy: RiskPolicy,
) -> Finding:
    user = tx.user
    return Finding(
        transaction_id=tx.id,
        actor_id=tx.actor_id,
        risk_score=score,
        risk_level=policy.level_for(score),
        flags=list(flags),
        reason=reason,
        reference=tx.display_reference,
        amount=tx.amount,
        currency=tx.currency,
        type=tx.type,
        mode=tx.mode,
        status=tx.status,
        created_at=tx.created_at,
        user_email=user.email if user else None,
        user_phone=user.phone if user else None,
        user_name=user.display_name if user else None,
        ip=tx.metadata.ip_address,
        location=tx.metadata.location,
        device=tx.metadata.device,
    )


def failure_burst(grouped: GroupedTransactions, policy: RiskPolicy) -> list[Finding]:
    """Flag clusters of failed transactions inside one window.

    The window is anchored on the actor's latest failure, not wall-clock time,
    so the result depends only on the snapshot.
    """
    findings: list[Finding] = []
    for txs in grouped.values():
        failed = [tx for tx in txs if tx.is_failed]
        if len(failed) < policy.failure_burst_min_failures:
            continue

        anchor = max(tx.created_at for tx in failed)
        cutoff = anchor - policy.failure_burst_window
        recent = [tx for tx in failed if tx.created_at > cutoff]
        if len(recent) < policy.failure_burst_min_failures:
            continue

        reason = f"User has {len(recent)} failed transactions within one hour"
        for tx in recent:
            findings.append(make_finding(
                tx,
                policy.failure_burst_score,
                ["multiple_failed_transactions", "rapid_failures"],
                reason,
                policy,
            ))
    return findings


def large_failed_amount(grouped: GroupedTransactions, policy: RiskPolicy) -> list[Finding]:
    """Flag any single failed transaction above the large-amount cutoff."""
    findings: list[Finding] = []
    for txs in grouped.values():
        for tx in txs:
            if not tx.is_failed or tx.amount <= policy.large_failed_amount:
                continue
            findings.append(make_finding(
                tx,
                policy.large_failed_score,
                ["large_amount", "failed_large_transaction"],
                f"Failed transaction with unusually large amount: {tx.amount:,} {tx.currency}",
                policy,
            ))
    return findings


def velocity_check(grouped: GroupedTransactions, policy: RiskPolicy) -> list[Finding]:
    """Flag every run of N consecutive transactions spanning less than the window."""
    size = policy.velocity_window_size
    reason = f"{size}+ transactions within {int(policy.velocity_max_span.total_seconds() // 60)} minutes"
    findings: list[Finding] = []

    for txs in grouped.values():
        if len(txs) < size:
            continue
        ordered = sorted(txs, key=lambda tx: tx.created_at)
        seen: set[str] = set()

        for i in range(len(ordered) - size + 1):
            window = ordered[i:i + size]
            if window[-1].created_at - window[0].created_at >= policy.velocity_max_span:
                continue
            for tx in window:
                if tx.id in seen:
                    continue
                seen.add(tx.id)
                findings.append(make_finding(
                    tx,
                    policy.velocity_score,
                    ["rapid_transactions", "velocity_check"],
                    reason,
                    policy,
                ))
    return findings


def high_failure_rate(grouped: GroupedTransactions, policy: RiskPolicy) -> list[Finding]:
    """Flag all failures of an actor whose overall failure rate is too high."""
    findings: list[Finding] = []
    for txs in grouped.values():
        total = len(txs)
        if total < policy.failure_rate_min_transactions:
            continue
        failed = [tx for tx in txs if tx.is_failed]
        rate = len(failed) / total
        if rate <= policy.failure_rate_threshold:
            continue

        reason = f"User has {rate:.0%} failure rate ({len(failed)}/{total} transactions)"
        seen: set[str] = set()
        for tx in failed:
            if tx.id in seen:
                continue
            seen.add(tx.id)
            findings.append(make_finding(
                tx, policy.failure_rate_score, ["high_failure_rate"], reason, policy,
            ))
    return findings


# Execution order is also the tie-break order for merged reasons.
DETECTORS: tuple[Detector, ...] = (
    failure_burst,
    large_failed_amount,
    velocity_check,
    high_failure_rate,
)
