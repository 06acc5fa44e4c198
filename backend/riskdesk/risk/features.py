"""Snapshot normalization and per-actor grouping for risk scoring."""

import logging
from collections import defaultdict
from typing import Any, Iterable

from pydantic import ValidationError

from ..models import TransactionRecord

log = logging.getLogger(__name__)


def normalize_snapshot(
    transactions: Iterable[Any],
) -> tuple[list[TransactionRecord], int]:
    """Validate raw transactions into records.

    Malformed entries (no actor, negative or non-numeric amount, bad
    timestamp or status) are dropped. Returns (records, skipped_count).
    """
    records: list[TransactionRecord] = []
    skipped = 0

    for raw in transactions:
        if isinstance(raw, TransactionRecord):
            records.append(raw)
            continue
        try:
            records.append(TransactionRecord.model_validate(raw))
        except ValidationError as exc:
            skipped += 1
            tx_id = raw.get("id") if isinstance(raw, dict) else None
            log.debug(f"Skipping malformed transaction {tx_id!r}: {exc.error_count()} error(s)")

    if skipped:
        log.warning(f"Skipped {skipped} malformed transaction(s) out of {skipped + len(records)}")

    return records, skipped


def group_by_actor(records: Iterable[TransactionRecord]) -> dict[str, list[TransactionRecord]]:
    """Group records by actor id, preserving first-seen actor and record order."""
    grouped: dict[str, list[TransactionRecord]] = defaultdict(list)
    for record in records:
        grouped[record.actor_id].append(record)
    return dict(grouped)
