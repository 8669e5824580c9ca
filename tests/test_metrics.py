"""Tests for attendance decision analytics."""

from datetime import datetime

import pytest

from faceattend.analytics.metrics import DecisionMetrics
from faceattend.core.types import AttendanceDecision, AttendanceStatus, DecisionReason, LivenessVerdict
from faceattend.database.db_manager import DatabaseManager
from faceattend.database.models import AttendanceModel


def make(identity_id, status, reason, timestamp, confidence):
    return AttendanceDecision(
        identity_id=identity_id,
        status=status,
        reason=reason,
        confidence=confidence,
        liveness=LivenessVerdict(is_live=reason is DecisionReason.ACCEPTED, confidence=0.8),
        timestamp=timestamp,
    )


@pytest.fixture
def decisions():
    return [
        make("U1", AttendanceStatus.PRESENT, DecisionReason.ACCEPTED, datetime(2026, 3, 2, 8, 30), 0.95),
        make("U2", AttendanceStatus.LATE, DecisionReason.ACCEPTED, datetime(2026, 3, 2, 9, 10), 0.85),
        make("U3", AttendanceStatus.UNAUTHORIZED, DecisionReason.SPOOF_SUSPECTED, datetime(2026, 3, 2, 9, 20), 0.90),
        make(None, AttendanceStatus.UNAUTHORIZED, DecisionReason.NO_MATCH, datetime(2026, 3, 3, 8, 0), 0.0),
    ]


def test_summary_keeps_spoof_and_unknown_apart(decisions):
    metrics = DecisionMetrics()
    summary = metrics.summarize(metrics.to_frame(decisions))

    assert summary["total"] == 4
    assert summary["present"] == 1
    assert summary["late"] == 1
    assert summary["unauthorized"] == 2
    assert summary["no_match"] == 1
    assert summary["spoof_suspected"] == 1
    assert summary["mean_accepted_confidence"] == pytest.approx(0.90)
    assert summary["spoof_rate"] == pytest.approx(1 / 3)


def test_empty_summary():
    metrics = DecisionMetrics()
    summary = metrics.summarize(metrics.to_frame([]))
    assert summary["total"] == 0
    assert summary["spoof_rate"] == 0.0


def test_daily_breakdown(decisions):
    metrics = DecisionMetrics()
    table = metrics.daily_breakdown(metrics.to_frame(decisions))

    assert list(table.columns) == ["date", "present", "late", "unauthorized"]
    first, second = table.to_dict("records")
    assert (first["present"], first["late"], first["unauthorized"]) == (1, 1, 1)
    assert (second["present"], second["late"], second["unauthorized"]) == (0, 0, 1)


def test_load_attendance_with_filters(tmp_path, decisions):
    db_manager = DatabaseManager(tmp_path / "attendance.db")
    db_manager.initialize_db()
    model = AttendanceModel(db_manager)
    for d in decisions:
        model.create(d)

    metrics = DecisionMetrics(db_manager)
    assert len(metrics.load_attendance()) == 4
    assert len(metrics.load_attendance(start_date="2026-03-03")) == 1
    assert len(metrics.load_attendance(end_date="2026-03-02", identity_id="U2")) == 1

    summary = metrics.summarize(metrics.load_attendance(end_date="2026-03-02"))
    assert summary["total"] == 3
    assert summary["spoof_suspected"] == 1


def test_load_attendance_empty(tmp_path):
    db_manager = DatabaseManager(tmp_path / "attendance.db")
    db_manager.initialize_db()
    assert DecisionMetrics(db_manager).load_attendance().empty
