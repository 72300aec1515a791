"""Typed failures raised by the diagnosis core.

Every error carries an ``ErrorKind`` so callers can branch on the category
without parsing messages.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INPUT = "input_error"
    NOT_FOUND = "not_found"
    COMPUTATION = "computation_error"
    PARTIAL_SOURCE_FAILURE = "partial_source_failure"
    EXTERNAL_UNAVAILABLE = "external_unavailable"


class DiagnosisCoreError(Exception):
    kind: ErrorKind = ErrorKind.INPUT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(DiagnosisCoreError):
    kind = ErrorKind.INPUT


class NoSymptomsFound(InputError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "No recognisable symptoms were found. Try the guided questionnaire "
            "or pick symptoms from the list instead."
        )


class AlreadyFinalized(InputError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is already completed and cannot be changed")
        self.session_id = session_id


class NotFoundError(DiagnosisCoreError):
    kind = ErrorKind.NOT_FOUND


class SessionNotFound(NotFoundError):
    def __init__(self, session_id: str, message: Optional[str] = None):
        super().__init__(message or f"Session {session_id} not found. Start a new assessment.")
        self.session_id = session_id


class SessionExpired(SessionNotFound):
    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session {session_id} expired after inactivity. Start a new assessment.")


class UnknownSymptom(NotFoundError):
    def __init__(self, symptoms):
        self.symptoms = list(symptoms)
        super().__init__(
            "Unknown symptom(s): " + ", ".join(self.symptoms) + ". Pick from the symptom list or describe them in free text."
        )


class ConditionNotFound(NotFoundError):
    def __init__(self, condition_id: str):
        super().__init__(f"Condition {condition_id} not found in reference data")
        self.condition_id = condition_id


class ComputationError(DiagnosisCoreError):
    kind = ErrorKind.COMPUTATION


class NoDiagnosisFound(ComputationError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "None of the known conditions match the reported symptoms. Add more detail or consult a clinician."
        )


class PartialSourceFailure(DiagnosisCoreError):
    """A single history source failed; the rest of the aggregation continues."""

    kind = ErrorKind.PARTIAL_SOURCE_FAILURE

    def __init__(self, source_name: str, source_type: str, cause: BaseException):
        super().__init__(f"History source '{source_name}' failed: {cause.__class__.__name__}: {cause}")
        self.source_name = source_name
        self.source_type = source_type
        self.cause = cause


class ExternalUnavailable(DiagnosisCoreError):
    kind = ErrorKind.EXTERNAL_UNAVAILABLE

    def __init__(self, service: str, detail: str = ""):
        msg = f"{service} is unavailable"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.service = service
