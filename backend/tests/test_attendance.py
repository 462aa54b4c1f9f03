"""Attendance recorder tests."""
from datetime import timedelta

import pytest

from flexidual.models import AttendanceOpenSlot, AttendanceRecord, SessionStatus
from flexidual.services.attendance_service import AttendanceService, AttendanceStatus, classify, interval_seconds
from flexidual.services.lifecycle import LifecycleService
from flexidual.utils.errors import ClockSkew, InvalidTransition, ValidationError
from conftest import NOW


@pytest.fixture
def live_session(make_session):
    """A 60 minute session starting now."""
    return make_session(start=NOW, minutes=60)


def at(clock, session, seconds):
    clock.set(session.scheduled_start + timedelta(seconds=seconds))


def beat(clock, session, student, seconds):
    at(clock, session, seconds)
    return AttendanceService.on_heartbeat(session.id, student.id)


def leave(clock, session, student, seconds):
    at(clock, session, seconds)
    return AttendanceService.on_leave(session.id, student.id)


def records_for(session, student):
    return AttendanceRecord.query.filter_by(session_id=session.id, student_id=student.id) \
        .order_by(AttendanceRecord.joined_at).all()


def test_classify_thresholds():
    assert classify(1800, 3600, 0.5, 0.1) == AttendanceStatus.PRESENT
    assert classify(360, 3600, 0.5, 0.1) == AttendanceStatus.PARTIAL
    assert classify(359, 3600, 0.5, 0.1) == AttendanceStatus.MISSED
    assert classify(0, 3600, 0.5, 0.1) == AttendanceStatus.MISSED


def test_interval_rejects_negative_span():
    with pytest.raises(ClockSkew):
        interval_seconds(NOW, NOW - timedelta(seconds=1))


def test_repeated_heartbeats_extend_one_record(live_session, data, clock):
    alice = data['alice']
    for seconds in range(0, 600, 60):
        beat(clock, live_session, alice, seconds)

    records = records_for(live_session, alice)
    assert len(records) == 1
    assert records[0].is_open
    assert records[0].duration_seconds == 540
    assert records[0].last_heartbeat_at == NOW + timedelta(seconds=540)
    assert records[0].session_date == '2025-03-03'


def test_leave_then_rejoin_creates_disjoint_records(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 0)
    beat(clock, live_session, alice, 60)
    leave(clock, live_session, alice, 120)
    beat(clock, live_session, alice, 300)

    first, second = records_for(live_session, alice)
    assert first.left_at == NOW + timedelta(seconds=120)
    assert first.duration_seconds == 120
    assert first.close_reason == 'leave'
    assert second.joined_at >= first.left_at
    assert second.is_open


def test_at_most_one_open_record(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 0)
    leave(clock, live_session, alice, 60)
    beat(clock, live_session, alice, 120)
    beat(clock, live_session, alice, 180)

    open_records = [r for r in records_for(live_session, alice) if r.is_open]
    assert len(open_records) == 1
    assert AttendanceOpenSlot.query.filter_by(session_id=live_session.id).count() == 1


def test_duplicate_leave_is_noop(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 0)
    first = leave(clock, live_session, alice, 90)
    again = leave(clock, live_session, alice, 200)

    assert again.id == first.id
    assert again.left_at == NOW + timedelta(seconds=90)
    assert len(records_for(live_session, alice)) == 1


def test_leave_without_join_returns_none(live_session, data, clock):
    assert leave(clock, live_session, data['alice'], 30) is None


def test_late_heartbeat_after_leave_is_absorbed(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 0)
    leave(clock, live_session, alice, 120)

    AttendanceService.on_heartbeat(live_session.id, alice.id, NOW + timedelta(seconds=118))

    assert len(records_for(live_session, alice)) == 1


def test_out_of_order_heartbeat_never_goes_negative(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 60)
    record = AttendanceService.on_heartbeat(live_session.id, alice.id, NOW + timedelta(seconds=30))

    assert record.clock_skew is True
    assert record.duration_seconds == 0
    assert record.last_heartbeat_at == NOW + timedelta(seconds=60)


def test_watermark_never_moves_backward(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 0)
    beat(clock, live_session, alice, 120)
    record = AttendanceService.on_heartbeat(live_session.id, alice.id, NOW + timedelta(seconds=90))

    assert record.last_heartbeat_at == NOW + timedelta(seconds=120)
    assert record.duration_seconds == 120


def test_stale_interval_closed_at_watermark_on_next_heartbeat(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 0)
    beat(clock, live_session, alice, 60)
    beat(clock, live_session, alice, 400)

    first, second = records_for(live_session, alice)
    assert first.close_reason == 'timeout'
    assert first.left_at == NOW + timedelta(seconds=60)
    assert first.duration_seconds == 60
    assert second.joined_at == NOW + timedelta(seconds=400)


def test_sweep_closes_stale_intervals(live_session, data, clock):
    beat(clock, live_session, data['alice'], 0)
    beat(clock, live_session, data['alice'], 60)
    beat(clock, live_session, data['bob'], 250)
    at(clock, live_session, 300)

    assert AttendanceService.sweep_stale() == 1
    alice_record = records_for(live_session, data['alice'])[0]
    assert alice_record.left_at == NOW + timedelta(seconds=60)
    assert alice_record.close_reason == 'timeout'
    assert records_for(live_session, data['bob'])[0].is_open


def test_on_timeout_closes_at_last_heartbeat(live_session, data, clock):
    beat(clock, live_session, data['alice'], 0)
    beat(clock, live_session, data['alice'], 45)
    at(clock, live_session, 1000)

    record = AttendanceService.on_timeout(live_session.id, data['alice'].id)
    assert record.duration_seconds == 45
    assert AttendanceService.on_timeout(live_session.id, data['alice'].id) is None


def test_heartbeat_rejected_for_cancelled_session(make_session, data):
    session = make_session(start=NOW + timedelta(minutes=5))
    LifecycleService.cancel(session, 'Teacher ill')

    with pytest.raises(InvalidTransition):
        AttendanceService.on_heartbeat(session.id, data['alice'].id)


def test_heartbeat_rejected_before_join_window(make_session, data):
    session = make_session(start=NOW + timedelta(minutes=30))
    with pytest.raises(InvalidTransition):
        AttendanceService.on_heartbeat(session.id, data['alice'].id)


def test_heartbeat_accepted_in_early_window(make_session, data):
    session = make_session(start=NOW + timedelta(minutes=5))
    record = AttendanceService.on_heartbeat(session.id, data['alice'].id)
    assert record.joined_at == NOW


def test_heartbeat_rejected_after_session_end(live_session, data, clock):
    at(clock, live_session, 3600)
    with pytest.raises(InvalidTransition):
        AttendanceService.on_heartbeat(live_session.id, data['alice'].id)


def test_ending_session_closes_open_intervals(live_session, data, clock):
    beat(clock, live_session, data['alice'], 1100)
    beat(clock, live_session, data['alice'], 1140)
    beat(clock, live_session, data['bob'], 0)
    at(clock, live_session, 1200)

    LifecycleService.end(live_session)
    closed = AttendanceService.finalize_session(live_session)

    assert closed == 2
    alice_record = records_for(live_session, data['alice'])[0]
    bob_record = records_for(live_session, data['bob'])[0]
    assert alice_record.left_at == NOW + timedelta(seconds=1200)
    assert alice_record.close_reason == 'session_end'
    # bob went quiet long ago; his interval ends at his last heartbeat
    assert bob_record.left_at == NOW


def test_summary_classifies_roster(live_session, data, clock):
    alice, bob = data['alice'], data['bob']
    for seconds in range(0, 3001, 120):
        beat(clock, live_session, alice, seconds)
    leave(clock, live_session, alice, 3000)
    for seconds in range(0, 601, 120):
        beat(clock, live_session, bob, seconds)
    leave(clock, live_session, bob, 600)
    at(clock, live_session, 3600)

    summary = AttendanceService.summarize(live_session.id)
    rows = {row['student_id']: row for row in summary['students']}

    assert summary['status'] == SessionStatus.COMPLETED.value
    assert rows[alice.id]['attended_seconds'] == 3000
    assert rows[alice.id]['status'] == 'present'
    assert rows[bob.id]['status'] == 'partial'
    assert summary['counts'] == {'present': 1, 'partial': 1, 'missed': 0}


def test_summary_without_records_marks_missed(live_session, data, clock):
    at(clock, live_session, 3600)
    summary = AttendanceService.summarize(live_session.id)

    assert summary['counts']['missed'] == 2
    assert all(row['attended_seconds'] == 0 for row in summary['students'])


def test_summary_sums_multiple_intervals(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 0)
    leave(clock, live_session, alice, 1000)
    beat(clock, live_session, alice, 1500)
    leave(clock, live_session, alice, 2500)

    summary = AttendanceService.summarize(live_session.id)
    row = next(r for r in summary['students'] if r['student_id'] == alice.id)
    assert row['attended_seconds'] == 2000
    assert row['status'] == 'present'


def test_summary_counts_open_interval_provisionally(live_session, data, clock):
    for seconds in range(0, 601, 60):
        beat(clock, live_session, data['alice'], seconds)

    row = next(r for r in AttendanceService.summarize(live_session.id)['students']
               if r['student_id'] == data['alice'].id)
    assert row['attended_seconds'] == 600
    assert row['provisional'] is True


def test_summary_lists_unrostered_students(live_session, data, clock):
    beat(clock, live_session, data['carol'], 0)
    summary = AttendanceService.summarize(live_session.id)
    assert summary['unrostered_student_ids'] == [data['carol'].id]


def test_export_csv(live_session, data, clock):
    beat(clock, live_session, data['alice'], 0)
    leave(clock, live_session, data['alice'], 2000)

    csv_text = AttendanceService.export_summary_csv(live_session.id)
    lines = csv_text.strip().splitlines()
    assert lines[0] == 'student_id,name,attended_seconds,ratio,status,provisional'
    assert any(line.startswith(f"{data['alice'].id},Alice,2000,") for line in lines[1:])


def test_single_long_interval_scenario(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 300)
    record = leave(clock, live_session, alice, 3300)

    assert record.duration_seconds == 3000
    row = next(r for r in AttendanceService.summarize(live_session.id)['students']
               if r['student_id'] == alice.id)
    assert row['status'] == 'present'


def test_leave_stamped_in_the_future_rejected(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 300)

    with pytest.raises(ValidationError):
        AttendanceService.on_leave(live_session.id, alice.id, NOW + timedelta(hours=10))

    record = records_for(live_session, alice)[0]
    assert record.is_open
    assert record.duration_seconds == 0


def test_leave_capped_at_server_clock(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 300)
    at(clock, live_session, 400)

    record = AttendanceService.on_leave(live_session.id, alice.id, NOW + timedelta(seconds=404))
    assert record.left_at == NOW + timedelta(seconds=400)
    assert record.duration_seconds == 100


def test_late_leave_capped_at_scheduled_end(live_session, data, clock):
    alice = data['alice']
    beat(clock, live_session, alice, 300)
    record = leave(clock, live_session, alice, 7200)

    assert record.left_at == live_session.scheduled_end
    assert record.duration_seconds == 3300
    assert record.duration_seconds <= live_session.duration_seconds


def test_heartbeat_stamped_in_the_future_rejected(live_session, data, clock):
    with pytest.raises(ValidationError):
        AttendanceService.on_heartbeat(live_session.id, data['alice'].id, NOW + timedelta(minutes=5))
    assert records_for(live_session, data['alice']) == []


def test_finalize_after_scheduled_end_caps_interval(live_session, data, clock):
    beat(clock, live_session, data['alice'], 3500)
    beat(clock, live_session, data['alice'], 3590)
    at(clock, live_session, 3700)

    AttendanceService.finalize_session(live_session)
    record = records_for(live_session, data['alice'])[0]
    assert record.left_at == live_session.scheduled_end
    assert record.duration_seconds == 100
