"""Unit tests for assessment session state management."""
from datetime import datetime, timedelta, timezone

import pytest

from diagnosis_core.application.sessions import (
    SessionManager,
    apply_step,
    finalize_session,
    new_session,
    session_key,
)
from diagnosis_core.domain.errors import AlreadyFinalized, ErrorKind, SessionExpired, SessionNotFound
from diagnosis_core.domain.models import AssessmentSession, AssessmentSnapshot, DiagnosisResult, SessionState
from diagnosis_core.infrastructure.sessions.memory_store import InMemorySessionStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def snapshot(p=0.4):
    return AssessmentSnapshot(
        results=[DiagnosisResult(condition_id="influenza", condition_name="Influenza", posterior_probability=p)],
        symptoms=["fever", "cough"],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def manager(store, clock):
    return SessionManager(store, ttl_seconds=1800, completed_retention_seconds=86400, clock=clock)


class TestStepFunctions:
    """Test the pure session transformations."""

    def test_apply_step_does_not_mutate(self, clock):
        session = new_session("s1", clock())
        updated = apply_step(session, "symptoms", {"x": 1}, clock())
        assert session.answers == {}
        assert session.state == SessionState.CREATED
        assert updated.answers == {"x": 1}
        assert updated.state == SessionState.IN_PROGRESS
        assert updated.step == "symptoms"

    def test_finalize_session_is_idempotent_for_same_results(self, clock):
        session = apply_step(new_session("s1", clock()), "a", {}, clock())
        done = finalize_session(session, snapshot(), clock())
        assert finalize_session(done, snapshot(), clock()) is done

    def test_finalize_session_rejects_different_results(self, clock):
        done = finalize_session(new_session("s1", clock()), snapshot(0.4), clock())
        with pytest.raises(AlreadyFinalized):
            finalize_session(done, snapshot(0.5), clock())


class TestSessionManager:
    """Test persistence, merging and lifecycle."""

    def test_create_and_resume(self, manager):
        session_id = manager.create_session(user_id="u1")
        resumed = manager.resume_session(session_id)
        assert resumed.session_id == session_id
        assert resumed.state == SessionState.CREATED
        assert resumed.step is None
        assert resumed.answers == {}

    def test_anonymous_session(self, manager):
        session_id = manager.create_session()
        manager.save_step(session_id, "a", {"x": 1})
        assert manager.resume_session(session_id).answers == {"x": 1}

    def test_steps_merge(self, manager):
        session_id = manager.create_session()
        manager.save_step(session_id, "a", {"x": 1})
        manager.save_step(session_id, "b", {"y": 2})

        resumed = manager.resume_session(session_id)
        assert resumed.step == "b"
        assert resumed.answers == {"x": 1, "y": 2}
        assert resumed.state == SessionState.IN_PROGRESS

    def test_field_level_last_write_wins(self, manager):
        session_id = manager.create_session()
        manager.save_step(session_id, "a", {"x": 1, "y": 1})
        manager.save_step(session_id, "b", {"x": 2})
        assert manager.resume_session(session_id).answers == {"x": 2, "y": 1}

    def test_save_step_bumps_updated_at(self, manager, clock):
        session_id = manager.create_session()
        clock.advance(minutes=5)
        session = manager.save_step(session_id, "a", {"x": 1})
        assert session.updated_at == clock()
        assert session.created_at == clock() - timedelta(minutes=5)

    def test_resume_from_another_device(self, store, clock, manager):
        session_id = manager.create_session(user_id="u1")
        manager.save_step(session_id, "a", {"x": 1})

        other_device = SessionManager(store, clock=clock)
        other_device.save_step(session_id, "b", {"y": 2})
        assert manager.resume_session(session_id).answers == {"x": 1, "y": 2}

    def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFound) as exc:
            manager.resume_session("missing")
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_finalize_makes_session_immutable(self, manager):
        session_id = manager.create_session()
        manager.save_step(session_id, "a", {"x": 1})
        manager.finalize(session_id, snapshot())

        resumed = manager.resume_session(session_id)
        assert resumed.state == SessionState.COMPLETED
        assert resumed.snapshot == snapshot()
        with pytest.raises(AlreadyFinalized):
            manager.save_step(session_id, "b", {"y": 2})

    def test_finalize_twice(self, manager):
        session_id = manager.create_session()
        first = manager.finalize(session_id, snapshot())
        second = manager.finalize(session_id, snapshot())
        assert first.completed_at == second.completed_at

        with pytest.raises(AlreadyFinalized):
            manager.finalize(session_id, snapshot(0.9))

    def test_expires_after_inactivity(self, manager, store, clock):
        session_id = manager.create_session()
        manager.save_step(session_id, "a", {"x": 1})
        clock.advance(minutes=31)

        with pytest.raises(SessionExpired):
            manager.resume_session(session_id)
        stored = AssessmentSession.model_validate_json(store.get(session_key(session_id)))
        assert stored.state == SessionState.EXPIRED
        with pytest.raises(SessionNotFound):
            manager.save_step(session_id, "b", {"y": 2})

    def test_activity_keeps_session_alive(self, manager, clock):
        session_id = manager.create_session()
        for _ in range(3):
            clock.advance(minutes=20)
            manager.save_step(session_id, "a", {"x": 1})
        assert manager.resume_session(session_id).state == SessionState.IN_PROGRESS

    def test_completed_session_does_not_expire(self, manager, clock):
        session_id = manager.create_session()
        manager.finalize(session_id, snapshot())
        clock.advance(hours=2)
        assert manager.resume_session(session_id).state == SessionState.COMPLETED

    def test_find_latest_session(self, manager):
        assert manager.find_latest_session("u1", "guided") is None
        manager.create_session(user_id="u1", path="guided")
        latest = manager.create_session(user_id="u1", path="guided")
        manager.create_session(user_id="u1", path="picker")

        found = manager.find_latest_session("u1", "guided")
        assert found.session_id == latest

    def test_find_latest_session_ignores_expired(self, manager, clock):
        manager.create_session(user_id="u1", path="guided")
        clock.advance(hours=1)
        assert manager.find_latest_session("u1", "guided") is None

    def test_discard_session(self, manager):
        session_id = manager.create_session(user_id="u1", path="picker")
        manager.discard_session(session_id)
        with pytest.raises(SessionNotFound):
            manager.resume_session(session_id)
        assert manager.find_latest_session("u1", "picker") is None

    def test_unreadable_session_is_not_found(self, manager, store):
        store.put(session_key("broken"), "{not json", 60)
        with pytest.raises(SessionNotFound):
            manager.resume_session("broken")
