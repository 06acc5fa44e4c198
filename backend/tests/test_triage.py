import time

import pytest

from riskdesk.directory import DirectoryUnavailable, StaticUserDirectory
from riskdesk.models import RiskLevel
from riskdesk.risk.detectors import DETECTORS
from riskdesk.triage import AnalysisError, analyze_snapshot


class FailingDirectory:
    def lookup(self, actor_ids):
        raise DirectoryUnavailable("connection refused")


class SlowDirectory:
    def lookup(self, actor_ids):
        time.sleep(0.5)
        return {}


class NoneDirectory:
    def lookup(self, actor_ids):
        return None


class RawDictDirectory:
    def __init__(self, users):
        self.users = users

    def lookup(self, actor_ids):
        return self.users


def test_failure_burst_scenario(make_tx):
    raw = [make_tx("old", status="FAILED", minutes=-240)]
    raw += [make_tx(f"f{i}", status="FAILED", minutes=i * 12) for i in range(5)]

    result = analyze_snapshot(raw)

    assert len(result.profiles) == 1
    profile = result.profiles[0]
    assert profile.risk_score == 85
    flagged = {f.transaction_id for f in profile.transactions}
    assert flagged == {f"f{i}" for i in range(5)}
    assert all("rapid_failures" in f.flags for f in profile.transactions)


def test_large_failed_amount_scenario(make_tx):
    raw = [make_tx("big", actor="fresh", status="FAILED", amount=15_000_000)]

    profile = analyze_snapshot(raw).profiles[0]

    assert profile.risk_score == 90
    assert profile.risk_level == RiskLevel.CRITICAL
    assert set(profile.flags) == {"large_amount", "failed_large_transaction"}


def test_velocity_scenario(make_tx):
    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]
    raw.append(make_tx("later", minutes=14))

    profile = analyze_snapshot(raw).profiles[0]

    assert profile.risk_score == 75
    assert {f.transaction_id for f in profile.transactions} == {f"t{i}" for i in range(5)}


def test_high_failure_rate_scenario(make_tx):
    raw = [make_tx(f"f{i}", status="FAILED", minutes=i * 120) for i in range(9)]
    raw += [make_tx(f"s{i}", minutes=3000 + i * 120) for i in range(3)]

    profile = analyze_snapshot(raw).profiles[0]

    assert profile.risk_score == 80
    assert profile.suspicious_transaction_count == 9
    assert profile.failed_transaction_count == 9
    assert profile.flags == ["high_failure_rate"]


def test_empty_snapshot():
    result = analyze_snapshot([])

    assert result.profiles == []
    assert result.skipped_records == 0
    assert not result.directory_warning


def test_analysis_is_deterministic(make_tx):
    raw = [make_tx(f"a{i}", actor="a", status="FAILED", minutes=i) for i in range(6)]
    raw += [make_tx(f"b{i}", actor="b", minutes=50 + i) for i in range(5)]
    raw.append(make_tx("c", actor="c", status="FAILED", amount=30_000_000))
    directory = StaticUserDirectory([{"id": "a", "status": "SUSPENDED"}])

    first = analyze_snapshot(raw, directory=directory)
    second = analyze_snapshot(raw, directory=directory)

    assert first.model_dump() == second.model_dump()
    assert [p.actor_id for p in first.profiles] == ["c", "a", "b"]


def test_malformed_records_are_skipped_and_counted(make_tx):
    good = [make_tx(f"t{i}", minutes=i) for i in range(5)]
    missing_actor = make_tx("m1")
    del missing_actor["userId"]
    negative = make_tx("m2", amount=-5)
    not_a_number = make_tx("m3", amount="lots")
    bad_time = make_tx("m4", createdAt="yesterday-ish")

    result = analyze_snapshot(good + [missing_actor, negative, not_a_number, bad_time])

    assert result.skipped_records == 4
    assert result.snapshot_size == 9
    assert result.profiles[0].suspicious_transaction_count == 5
    assert any("malformed" in w for w in result.warnings)


def test_missing_metadata_defaults_to_empty(make_tx):
    raw = [make_tx("big", status="FAILED", amount=11_000_000, metadata=None, user=None)]

    finding = analyze_snapshot(raw).profiles[0].transactions[0]

    assert finding.ip is None
    assert finding.location is None
    assert finding.user_email is None


def test_limit_is_recorded_not_enforced(make_tx):
    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]

    result = analyze_snapshot(raw, limit=2)

    assert result.snapshot_limit == 2
    assert result.profiles[0].suspicious_transaction_count == 5


def test_directory_marks_suspended_actor_blocked(make_tx):
    raw = [make_tx("x", actor="blocked", status="FAILED", amount=20_000_000)]
    raw.append(make_tx("y", actor="banned", status="FAILED", amount=20_000_000))
    raw.append(make_tx("z", actor="unknown", status="FAILED", amount=20_000_000))
    directory = StaticUserDirectory([
        {"id": "blocked", "status": "SUSPENDED", "suspendedAt": "2025-02-28T09:00:00Z"},
        {"id": "banned", "status": "BLOCKED"},
    ])

    result = analyze_snapshot(raw, directory=directory)
    profiles = {p.actor_id: p for p in result.profiles}

    assert profiles["blocked"].is_blocked
    assert profiles["blocked"].blocked_at.isoformat() == "2025-02-28T09:00:00+00:00"
    assert not profiles["banned"].is_blocked
    assert not profiles["unknown"].is_blocked
    assert not result.directory_warning


def test_directory_failure_degrades_to_warning(make_tx):
    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]

    result = analyze_snapshot(raw, directory=FailingDirectory())

    assert len(result.profiles) == 1
    assert not result.profiles[0].is_blocked
    assert result.directory_warning
    assert any("connection refused" in w for w in result.warnings)


def test_directory_returning_non_mapping_degrades_to_warning(make_tx):
    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]

    result = analyze_snapshot(raw, directory=NoneDirectory())

    assert [p.actor_id for p in result.profiles] == ["user-1"]
    assert not result.profiles[0].is_blocked
    assert result.directory_warning
    assert any("NoneType" in w for w in result.warnings)


def test_directory_returning_plain_dicts_is_validated(make_tx):
    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]

    result = analyze_snapshot(raw, directory=RawDictDirectory({"user-1": {"id": "user-1", "status": "suspended "}}))

    assert result.profiles[0].is_blocked
    assert not result.directory_warning

    result = analyze_snapshot(raw, directory=RawDictDirectory({"user-1": "SUSPENDED"}))

    assert not result.profiles[0].is_blocked
    assert result.directory_warning


def test_directory_timeout_degrades_to_warning(make_tx):
    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]

    started = time.monotonic()
    result = analyze_snapshot(raw, directory=SlowDirectory(), directory_timeout=0.05)

    assert time.monotonic() - started < 0.4
    assert result.directory_warning
    assert all(not p.is_blocked for p in result.profiles)
    assert any("timed out" in w for w in result.warnings)


def test_lookups_keep_working_after_a_timeout(make_tx):
    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]
    analyze_snapshot(raw, directory=SlowDirectory(), directory_timeout=0.01)

    result = analyze_snapshot(raw, directory=StaticUserDirectory([{"id": "user-1", "status": "SUSPENDED"}]))

    assert result.profiles[0].is_blocked
    assert not result.directory_warning


def test_internal_fault_is_reported_as_analysis_error(make_tx):
    def broken(grouped, policy):
        raise ZeroDivisionError("boom")

    raw = [make_tx(f"t{i}", minutes=i) for i in range(5)]

    with pytest.raises(AnalysisError) as excinfo:
        analyze_snapshot(raw, detectors=(*DETECTORS, broken))
    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)
