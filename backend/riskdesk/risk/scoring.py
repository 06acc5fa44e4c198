"""Finding fusion: merge detections per transaction and roll them up per actor."""

import logging
from typing import Iterable

from ..models import ActorRiskProfile, Finding, TransactionRecord, TransactionStatus
from .detectors import DETECTORS, Detector
from .features import group_by_actor
from .policy import DEFAULT_POLICY, RiskPolicy

log = logging.getLogger(__name__)


def run_detectors(
    records: list[TransactionRecord],
    policy: RiskPolicy = DEFAULT_POLICY,
    detectors: Iterable[Detector] = DETECTORS,
) -> list[Finding]:
    """Run every detector over the grouped snapshot and concatenate results."""
    grouped = group_by_actor(records)
    findings: list[Finding] = []
    for detector in detectors:
        hits = detector(grouped, policy)
        if hits:
            log.debug(f"{detector.__name__}: {len(hits)} finding(s)")
        findings.extend(hits)
    return findings


def dedupe_findings(
    findings: Iterable[Finding],
    policy: RiskPolicy = DEFAULT_POLICY,
) -> list[Finding]:
    """Collapse findings to one per transaction.

    Flags are unioned, the score is the max, and the reason comes from the
    highest scoring detection (the first reporter wins ties).
    """
    merged: dict[str, Finding] = {}

    for finding in findings:
        current = merged.get(finding.transaction_id)
        if current is None:
            merged[finding.transaction_id] = finding.model_copy(
                update={"flags": list(dict.fromkeys(finding.flags))}
            )
            continue

        flags = list(dict.fromkeys([*current.flags, *finding.flags]))
        update: dict = {"flags": flags}
        if finding.risk_score > current.risk_score:
            update["risk_score"] = finding.risk_score
            update["reason"] = finding.reason
        score = update.get("risk_score", current.risk_score)
        update["risk_level"] = policy.level_for(score)
        merged[finding.transaction_id] = current.model_copy(update=update)

    return list(merged.values())


def aggregate_by_actor(
    findings: Iterable[Finding],
    policy: RiskPolicy = DEFAULT_POLICY,
) -> list[ActorRiskProfile]:
    """Build one risk profile per actor in a single pass over the findings.

    Actors without findings never get a profile.
    """
    profiles: dict[str, ActorRiskProfile] = {}
    flag_sets: dict[str, dict[str, None]] = {}

    for finding in findings:
        profile = profiles.get(finding.actor_id)
        if profile is None:
            profile = ActorRiskProfile(
                actor_id=finding.actor_id,
                last_suspicious_activity_at=finding.created_at,
            )
            profiles[finding.actor_id] = profile
            flag_sets[finding.actor_id] = {}

        profile.email = profile.email or finding.user_email
        profile.phone = profile.phone or finding.user_phone
        profile.name = profile.name or finding.user_name

        profile.suspicious_transaction_count += 1
        profile.total_flagged_amount += finding.amount
        profile.transactions.append(finding)
        if finding.status is TransactionStatus.FAILED:
            profile.failed_transaction_count += 1

        # Score only ever moves up as findings merge in
        if finding.risk_score > profile.risk_score:
            profile.risk_score = finding.risk_score

        flag_sets[finding.actor_id].update(dict.fromkeys(finding.flags))

        if finding.created_at > profile.last_suspicious_activity_at:
            profile.last_suspicious_activity_at = finding.created_at

    for actor_id, profile in profiles.items():
        profile.flags = list(flag_sets[actor_id])
        profile.risk_level = policy.level_for(profile.risk_score)

    return list(profiles.values())


def rank_profiles(profiles: Iterable[ActorRiskProfile]) -> list[ActorRiskProfile]:
    """Order by risk score, then most recent suspicious activity, both descending."""
    return sorted(
        profiles,
        key=lambda p: (p.risk_score, p.last_suspicious_activity_at),
        reverse=True,
    )


def detect_findings(
    records: list[TransactionRecord],
    policy: RiskPolicy = DEFAULT_POLICY,
    detectors: Iterable[Detector] = DETECTORS,
) -> list[Finding]:
    """Detector pass followed by per-transaction merging."""
    return dedupe_findings(run_detectors(records, policy, detectors), policy)
