"""
Multi-step assessment sessions.

A session is a plain serializable ``AssessmentSession`` value. The module-level
step functions transform it without side effects; ``SessionManager`` loads and
stores it through a ``SessionStorePort``.

    created -> in_progress(step) -> completed
    created | in_progress -> expired   (after the inactivity TTL)
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from diagnosis_core.application.ports import SessionStorePort
from diagnosis_core.domain.errors import AlreadyFinalized, InputError, SessionExpired, SessionNotFound
from diagnosis_core.domain.models import (
    AssessmentSession,
    AssessmentSnapshot,
    ResumedSession,
    SessionState,
)


logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_COMPLETED_RETENTION_SECONDS = 24 * 60 * 60

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_session(session_id: str, now: datetime, user_id: Optional[str] = None, path: str = "free_text") -> AssessmentSession:
    return AssessmentSession(
        id=session_id,
        user_id=user_id,
        path=path,
        state=SessionState.CREATED,
        created_at=now,
        updated_at=now,
    )


def apply_step(session: AssessmentSession, step: str, payload_delta: Dict[str, Any], now: datetime) -> AssessmentSession:
    """Merges one wizard step into the answers; fields in the delta overwrite stored ones."""
    if session.state == SessionState.COMPLETED:
        raise AlreadyFinalized(session.id)
    if session.state == SessionState.EXPIRED:
        raise SessionExpired(session.id)
    if not step:
        raise InputError("A step name is required")

    answers = dict(session.answers)
    answers.update(payload_delta or {})
    return session.model_copy(
        update={
            "state": SessionState.IN_PROGRESS,
            "step": step,
            "answers": answers,
            "updated_at": now,
        }
    )


def finalize_session(session: AssessmentSession, snapshot: AssessmentSnapshot, now: datetime) -> AssessmentSession:
    if session.state == SessionState.COMPLETED:
        if session.snapshot == snapshot:
            return session
        raise AlreadyFinalized(session.id)
    if session.state == SessionState.EXPIRED:
        raise SessionExpired(session.id)
    return session.model_copy(
        update={
            "state": SessionState.COMPLETED,
            "snapshot": snapshot,
            "completed_at": now,
            "updated_at": now,
        }
    )


def expire_session(session: AssessmentSession) -> AssessmentSession:
    return session.model_copy(update={"state": SessionState.EXPIRED})


def is_expired(session: AssessmentSession, now: datetime, ttl_seconds: int) -> bool:
    if session.state == SessionState.COMPLETED:
        return False
    if session.state == SessionState.EXPIRED:
        return True
    return now - session.updated_at > timedelta(seconds=ttl_seconds)


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def user_index_key(user_id: str, path: str) -> str:
    return f"session-user:{user_id}:{path}"


class SessionManager:
    """Persists assessment progress so it survives reloads and device switches."""

    def __init__(
        self,
        store: SessionStorePort,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        completed_retention_seconds: int = DEFAULT_COMPLETED_RETENTION_SECONDS,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.completed_retention_seconds = completed_retention_seconds
        self.clock = clock or utc_now

    def create_session(self, user_id: Optional[str] = None, path: str = "free_text") -> str:
        session = new_session(uuid.uuid4().hex, self.clock(), user_id=user_id, path=path)
        self._save(session)
        logger.info("Created session %s (path=%s, user=%s)", session.id, path, user_id or "anonymous")
        return session.id

    def save_step(self, session_id: str, step: str, payload_delta: Dict[str, Any]) -> AssessmentSession:
        session = apply_step(self.get_session(session_id), step, payload_delta, self.clock())
        self._save(session)
        return session

    def resume_session(self, session_id: str) -> ResumedSession:
        session = self.get_session(session_id)
        return ResumedSession(
            session_id=session.id,
            state=session.state,
            step=session.step,
            answers=session.answers,
            snapshot=session.snapshot,
        )

    def finalize(self, session_id: str, snapshot: AssessmentSnapshot) -> AssessmentSession:
        session = self.get_session(session_id)
        finalized = finalize_session(session, snapshot, self.clock())
        if finalized is not session:
            self._save(finalized)
            logger.info("Finalized session %s with %d result(s)", session_id, len(snapshot.results))
        return finalized

    def find_latest_session(self, user_id: str, path: str) -> Optional[ResumedSession]:
        session_id = self.store.get(user_index_key(user_id, path))
        if not session_id:
            return None
        try:
            return self.resume_session(session_id)
        except SessionNotFound:
            return None

    def discard_session(self, session_id: str) -> None:
        session = self._load(session_id)
        self.store.delete(session_key(session_id))
        if session is not None and session.user_id:
            key = user_index_key(session.user_id, session.path)
            if self.store.get(key) == session_id:
                self.store.delete(key)
        logger.info("Discarded session %s", session_id)

    def get_session(self, session_id: str) -> AssessmentSession:
        session = self._load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if is_expired(session, self.clock(), self.ttl_seconds):
            if session.state != SessionState.EXPIRED:
                session = expire_session(session)
                self._save(session)
                logger.info("Session %s expired after inactivity", session_id)
            raise SessionExpired(session_id)
        return session

    def _load(self, session_id: str) -> Optional[AssessmentSession]:
        raw = self.store.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return AssessmentSession.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Stored session %s is unreadable: %s", session_id, e)
            return None

    def _save(self, session: AssessmentSession) -> None:
        if session.state == SessionState.COMPLETED:
            ttl = self.completed_retention_seconds
        else:
            ttl = self.ttl_seconds
        self.store.put(session_key(session.id), session.model_dump_json(), ttl)
        if session.user_id and session.state != SessionState.EXPIRED:
            self.store.put(user_index_key(session.user_id, session.path), session.id, ttl)
