"""Snapshot analysis pipeline: detect, merge, aggregate, rank, enrich."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from .config import DIRECTORY_TIMEOUT
from .directory import UserDirectory, enrich_profiles
from .models import AnalysisResult
from .risk.detectors import DETECTORS, Detector
from .risk.features import normalize_snapshot
from .risk.policy import DEFAULT_POLICY, RiskPolicy
from .risk.scoring import aggregate_by_actor, detect_findings, rank_profiles

log = logging.getLogger(__name__)


class AnalysisError(RuntimeError):
    """Unexpected internal fault while analyzing a snapshot."""


def analyze_snapshot(
    transactions: Iterable[Any],
    limit: Optional[int] = None,
    *,
    directory: Optional[UserDirectory] = None,
    policy: RiskPolicy = DEFAULT_POLICY,
    detectors: Iterable[Detector] = DETECTORS,
    directory_timeout: float = DIRECTORY_TIMEOUT,
) -> AnalysisResult:
    """Return ranked actor risk profiles for a transaction snapshot.

    ``limit`` is the page size the caller fetched the snapshot with; it is
    recorded on the result and never applied here. Malformed records are
    skipped and counted. A failing directory only produces a warning.
    """
    try:
        records, skipped = normalize_snapshot(transactions)
        findings = detect_findings(records, policy, tuple(detectors))
        profiles = rank_profiles(aggregate_by_actor(findings, policy))
    except Exception as exc:
        log.exception("Snapshot analysis failed")
        raise AnalysisError(f"Snapshot analysis failed: {exc}") from exc

    result = AnalysisResult(
        profiles=profiles,
        skipped_records=skipped,
        snapshot_size=len(records) + skipped,
        snapshot_limit=limit,
    )
    if skipped:
        result.warnings.append(f"{skipped} malformed transaction(s) skipped")

    if directory is not None:
        outcome = enrich_profiles(profiles, directory, timeout=directory_timeout)
        result.profiles = outcome.profiles
        if outcome.warning:
            result.directory_warning = True
            result.warnings.append(outcome.warning)

    log.info(
        f"Analyzed {len(records)} transaction(s): {len(findings)} finding(s), "
        f"{len(profiles)} actor profile(s)"
    )
    return result
