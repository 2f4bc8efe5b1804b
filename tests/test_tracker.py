import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from attendance_bot.audit import AuditLog
from attendance_bot.db import Database
from attendance_bot.errors import InvalidSignal, MissingIdentity, PersistenceFailure
from attendance_bot.models import ActivityCode, OpenSession, OutcomeKind
from attendance_bot.tracker import AttendanceTracker, Transition, plan_transition

GROUP = -1001
T0 = datetime(2026, 2, 2, 10, 0, tzinfo=timezone.utc)
EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


def make_tracker() -> tuple[Database, AttendanceTracker]:
    db = Database(":memory:")
    db.initialize()
    return db, AttendanceTracker(db=db)


def open_session(code: ActivityCode) -> OpenSession:
    return OpenSession(person_id=1, group_id=GROUP, code=code, started_at_utc=T0)


@pytest.mark.parametrize(
    ("current", "code", "expected"),
    [
        (None, ActivityCode.CHECK_IN, Transition.LOG),
        (None, ActivityCode.LEAVE, Transition.LOG),
        (None, ActivityCode.MEDICAL, Transition.LOG),
        (None, ActivityCode.CHECK_OUT, Transition.LOG),
        (None, ActivityCode.RESTROOM, Transition.OPEN),
        (ActivityCode.MEAL, ActivityCode.MEAL, Transition.CLOSE),
        (ActivityCode.RESTROOM, ActivityCode.ERRAND, Transition.SUPERSEDE),
        (ActivityCode.ERRAND, ActivityCode.CHECK_OUT, Transition.CLOSE_AND_LOG),
        (ActivityCode.RESTROOM, ActivityCode.CHECK_IN, Transition.LOG),
        (ActivityCode.RESTROOM, ActivityCode.LEAVE, Transition.LOG),
        (ActivityCode.MEAL, ActivityCode.MEDICAL, Transition.LOG),
    ],
)
def test_plan_transition_table(current, code, expected) -> None:
    session = open_session(current) if current is not None else None
    assert plan_transition(session, code) is expected


def test_redundant_checkouts_only_log_events() -> None:
    db, tracker = make_tracker()

    first = tracker.apply(GROUP, 1, ActivityCode.CHECK_OUT, T0)
    second = tracker.apply(GROUP, 1, ActivityCode.CHECK_OUT, T0 + timedelta(minutes=1))

    assert first.kinds == {OutcomeKind.EVENT_LOGGED}
    assert second.kinds == {OutcomeKind.EVENT_LOGGED}
    assert [event.code for event in db.query_since(EPOCH)] == [ActivityCode.CHECK_OUT, ActivityCode.CHECK_OUT]
    assert db.list_open_sessions() == []
    assert tracker.get_session(1) is None


@pytest.mark.parametrize("code", [ActivityCode.RESTROOM, ActivityCode.MEAL, ActivityCode.ERRAND])
def test_repeating_an_interval_code_closes_it(code: ActivityCode) -> None:
    db, tracker = make_tracker()
    t1 = T0 + timedelta(minutes=15)

    opened = tracker.apply(GROUP, 1, code, T0, display_name="Alice")
    closed = tracker.apply(GROUP, 1, code, t1, display_name="Alice")

    assert opened.kinds == {OutcomeKind.SESSION_OPENED}
    assert opened.opened_session is not None and opened.opened_session.started_at_utc == T0
    assert closed.kinds == {OutcomeKind.SESSION_CLOSED}
    assert closed.duration == timedelta(minutes=15)

    events = db.query_since(EPOCH)
    assert len(events) == 1
    assert events[0].code is code
    assert events[0].started_at_utc == T0
    assert events[0].ended_at_utc == t1
    assert events[0].timestamp_utc == t1
    assert events[0].duration == t1 - T0
    assert db.list_open_sessions() == []
    assert tracker.get_session(1) is None


def test_different_interval_code_supersedes_open_break() -> None:
    db, tracker = make_tracker()
    t1 = T0 + timedelta(minutes=4)

    tracker.apply(GROUP, 1, ActivityCode.RESTROOM, T0)
    outcome = tracker.apply(GROUP, 1, ActivityCode.MEAL, t1)

    assert outcome.kinds == {
        OutcomeKind.SESSION_CLOSED,
        OutcomeKind.SESSION_OPENED,
        OutcomeKind.SESSION_SUPERSEDED,
    }
    assert outcome.closed_code is ActivityCode.RESTROOM
    assert outcome.duration == timedelta(minutes=4)

    events = db.query_since(EPOCH)
    assert [event.code for event in events] == [ActivityCode.RESTROOM]

    sessions = db.list_open_sessions()
    assert len(sessions) == 1
    assert sessions[0].code is ActivityCode.MEAL
    assert sessions[0].started_at_utc == t1
    assert tracker.get_session(1) == sessions[0]


def test_checkout_closes_open_break_before_logging() -> None:
    db, tracker = make_tracker()
    t1 = T0 + timedelta(minutes=30)

    tracker.apply(GROUP, 1, ActivityCode.MEAL, T0)
    outcome = tracker.apply(GROUP, 1, ActivityCode.CHECK_OUT, t1)

    assert outcome.kinds == {OutcomeKind.SESSION_CLOSED, OutcomeKind.EVENT_LOGGED}
    assert outcome.duration == timedelta(minutes=30)

    events = db.query_since(EPOCH)
    assert [event.code for event in events] == [ActivityCode.MEAL, ActivityCode.CHECK_OUT]
    assert events[0].id < events[1].id
    assert db.list_open_sessions() == []


def test_other_instant_codes_keep_break_open() -> None:
    db, tracker = make_tracker()

    tracker.apply(GROUP, 1, ActivityCode.RESTROOM, T0)
    outcome = tracker.apply(GROUP, 1, ActivityCode.LEAVE, T0 + timedelta(minutes=1))

    assert outcome.kinds == {OutcomeKind.EVENT_LOGGED}
    assert [event.code for event in db.query_since(EPOCH)] == [ActivityCode.LEAVE]
    assert tracker.get_session(1).code is ActivityCode.RESTROOM
    assert db.get_open_session(1).code is ActivityCode.RESTROOM


def test_at_most_one_open_session_per_person() -> None:
    db, tracker = make_tracker()
    sequence = [
        ActivityCode.RESTROOM,
        ActivityCode.MEAL,
        ActivityCode.CHECK_IN,
        ActivityCode.ERRAND,
        ActivityCode.ERRAND,
        ActivityCode.MEAL,
        ActivityCode.RESTROOM,
        ActivityCode.CHECK_OUT,
        ActivityCode.MEAL,
    ]

    for offset, code in enumerate(sequence):
        tracker.apply(GROUP, 1, code, T0 + timedelta(minutes=offset))
        tracker.apply(GROUP, 2, code, T0 + timedelta(minutes=offset))

        stored = db.list_open_sessions()
        assert len([session for session in stored if session.person_id == 1]) <= 1
        assert {session.person_id: session for session in stored} == {
            session.person_id: session for session in tracker.active_sessions()
        }

    assert tracker.get_session(1).code is ActivityCode.MEAL


def test_persons_are_tracked_independently() -> None:
    db, tracker = make_tracker()

    tracker.apply(GROUP, 1, ActivityCode.RESTROOM, T0)
    tracker.apply(GROUP, 2, ActivityCode.RESTROOM, T0 + timedelta(minutes=1))
    tracker.apply(GROUP, 1, ActivityCode.RESTROOM, T0 + timedelta(minutes=5))

    assert tracker.get_session(1) is None
    assert tracker.get_session(2).code is ActivityCode.RESTROOM
    assert [event.person_id for event in db.query_since(EPOCH)] == [1]


def test_load_all_recovers_break_after_restart() -> None:
    db = Database(":memory:")
    db.initialize()
    db.put_open_session(
        OpenSession(person_id=1, group_id=GROUP, code=ActivityCode.RESTROOM, started_at_utc=T0, display_name="Alice")
    )

    tracker = AttendanceTracker(db=db)
    loaded = tracker.load_all()
    assert set(loaded) == {1}

    t1 = T0 + timedelta(minutes=12)
    outcome = tracker.apply(GROUP, 1, ActivityCode.RESTROOM, t1)

    assert outcome.kinds == {OutcomeKind.SESSION_CLOSED}
    assert outcome.duration == t1 - T0
    assert outcome.closed_event.display_name == "Alice"
    assert db.list_open_sessions() == []


def test_out_of_order_signal_keeps_negative_duration() -> None:
    db, tracker = make_tracker()

    tracker.apply(GROUP, 1, ActivityCode.MEAL, T0)
    outcome = tracker.apply(GROUP, 1, ActivityCode.MEAL, T0 - timedelta(minutes=2))

    assert outcome.duration == timedelta(minutes=-2)
    assert db.query_since(EPOCH)[0].duration == timedelta(minutes=-2)


def test_wire_codes_are_accepted_and_unknown_codes_rejected() -> None:
    db, tracker = make_tracker()

    outcome = tracker.apply(GROUP, 1, "WC", T0)
    assert outcome.code is ActivityCode.RESTROOM

    with pytest.raises(InvalidSignal):
        tracker.apply(GROUP, 1, "zz", T0)
    with pytest.raises(InvalidSignal):
        tracker.apply(GROUP, 1, 7, T0)

    assert tracker.get_session(1).code is ActivityCode.RESTROOM


def test_missing_identity_is_rejected_without_state_change() -> None:
    db, tracker = make_tracker()

    with pytest.raises(MissingIdentity):
        tracker.apply(None, 1, ActivityCode.CHECK_IN, T0)
    with pytest.raises(MissingIdentity):
        tracker.apply(GROUP, None, ActivityCode.RESTROOM, T0)

    assert db.query_since(EPOCH) == []
    assert tracker.active_sessions() == []


def test_storage_failure_leaves_mirror_untouched() -> None:
    db, tracker = make_tracker()
    tracker.apply(GROUP, 1, ActivityCode.RESTROOM, T0)
    db.close()

    with pytest.raises(PersistenceFailure):
        tracker.apply(GROUP, 1, ActivityCode.RESTROOM, T0 + timedelta(minutes=5))
    with pytest.raises(PersistenceFailure):
        tracker.apply(GROUP, 2, ActivityCode.MEAL, T0 + timedelta(minutes=5))

    assert tracker.get_session(1).started_at_utc == T0
    assert tracker.get_session(2) is None


def test_apply_is_serialized_per_person() -> None:
    db, tracker = make_tracker()

    def toggle() -> None:
        for _ in range(50):
            tracker.apply(GROUP, 1, ActivityCode.RESTROOM)

    workers = [threading.Thread(target=toggle) for _ in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    # 100 toggles of the same break always end closed, with one event per close.
    assert tracker.get_session(1) is None
    assert db.list_open_sessions() == []
    assert len(db.query_since(EPOCH)) == 50


def test_logged_events_are_mirrored_to_audit_log(tmp_path) -> None:
    db = Database(":memory:")
    db.initialize()
    audit_path = tmp_path / "logs" / "attendance-log.jsonl"
    tracker = AttendanceTracker(db=db, audit=AuditLog(audit_path))

    tracker.apply(GROUP, 1, ActivityCode.CHECK_IN, T0, display_name="Alice", handle="alice")
    tracker.apply(GROUP, 1, ActivityCode.MEAL, T0 + timedelta(hours=3))
    tracker.apply(GROUP, 1, ActivityCode.MEAL, T0 + timedelta(hours=3, minutes=20))

    records = [json.loads(line) for line in audit_path.read_text(encoding="utf-8").splitlines()]
    assert [record["code"] for record in records] == ["1", "mb"]
    assert records[0]["username"] == "alice"
    assert records[1]["duration_ms"] == 20 * 60 * 1000
