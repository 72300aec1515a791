import argparse
import logging
import sys
from typing import List, Optional

from diagnosis_core.application.sessions import SessionManager
from diagnosis_core.application.use_cases import AssessmentUseCase
from diagnosis_core.domain.errors import DiagnosisCoreError
from diagnosis_core.domain.models import InputMode
from diagnosis_core.infrastructure.clinician.memory_queue import InMemoryClinicianQueue
from diagnosis_core.infrastructure.clinician.webhook import WebhookClinicianWorkflowAdapter
from diagnosis_core.infrastructure.config import Settings
from diagnosis_core.infrastructure.history.json_store import JsonHistoryStore
from diagnosis_core.infrastructure.reference.json_store import JsonReferenceDataStore
from diagnosis_core.infrastructure.sessions.memory_store import InMemorySessionStore
from diagnosis_core.infrastructure.sessions.redis_store import RedisSessionStore


logger = logging.getLogger(__name__)


def build_use_case(settings: Settings) -> AssessmentUseCase:
    if settings.redis_url:
        store = RedisSessionStore.from_url(settings.redis_url)
    else:
        store = InMemorySessionStore()

    if settings.clinician_webhook_url:
        clinician = WebhookClinicianWorkflowAdapter(settings.clinician_webhook_url)
    else:
        logger.info("No clinician webhook configured; approval requests stay in memory")
        clinician = InMemoryClinicianQueue()

    return AssessmentUseCase(
        reference_data=JsonReferenceDataStore(settings.reference_data_path),
        sessions=SessionManager(
            store,
            ttl_seconds=settings.session_ttl_seconds,
            completed_retention_seconds=settings.completed_session_retention_seconds,
        ),
        clinician=clinician,
        history_store=JsonHistoryStore(settings.history_store_path),
        engine_config=settings.engine_config,
        approval_threshold=settings.approval_threshold,
        max_matches=settings.free_text_max_matches,
        history_timeout_seconds=settings.history_source_timeout_seconds,
    )


def _cmd_diagnose(usecase: AssessmentUseCase, args: argparse.Namespace) -> int:
    if args.text:
        mode = InputMode.FREE_TEXT
    elif args.age is not None or args.severity is not None:
        mode = InputMode.GUIDED
    else:
        mode = InputMode.PICKER

    session_id = usecase.start(user_id=args.user, mode=mode)
    usecase.submit_step(session_id, "symptoms", {"text": args.text, "selected_symptoms": args.symptom or []})
    usecase.submit_step(
        session_id,
        "context",
        {
            "age": args.age,
            "gender": args.gender,
            "severity_score": args.severity,
            "duration_days": args.duration_days,
        },
    )
    response = usecase.assess(session_id)

    print(response.disclaimer + "\n")
    if response.emergency:
        print("EMERGENCY: seek immediate medical care.")
    print(f"Risk level: {response.risk_level}")
    if response.red_flags:
        print("Red flags: " + ", ".join(response.red_flags))
        for advice in response.red_flag_advice:
            print(f"  ! {advice}")
    print("\nPossible conditions:")
    for rank, result in enumerate(response.results, start=1):
        flags = []
        if result.is_rare:
            flags.append("rare")
        if result.priority.value != "routine":
            flags.append(result.priority.value)
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"  {rank}. {result.condition_name:<28} {result.posterior_probability:6.1%}{suffix}")

    if response.recommendations:
        print("\nMedication guidance:")
        for rec in response.recommendations:
            gate = "needs clinician approval" if rec.requires_clinician_approval else "over the counter"
            print(f"  - {rec.drug_name}: {rec.dosage} ({gate})")
    if response.needs_more_information:
        print("\nMore detail would sharpen this result - try the guided questionnaire.")
        if response.next_question is not None:
            print(f"Next question: {response.next_question.text}")

    if args.save:
        usecase.save_to_history(session_id)
        print(f"\nSaved to history as {session_id}")
    return 0


def _cmd_history(usecase: AssessmentUseCase, args: argparse.Namespace) -> int:
    history = usecase.history()
    for entry in history.entries[: args.limit]:
        meds = ", ".join(m.name for m in entry.payload.medications)
        line = f"{entry.timestamp:%Y-%m-%d %H:%M}  {entry.source_type.value:<18} {entry.payload.title}"
        if meds:
            line += f"  ({meds})"
        print(line)
    for failure in history.failures:
        print(f"! {failure.source_name}: {failure.message}", file=sys.stderr)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="diagnosis-core", description="Symptom-to-diagnosis decision engine")
    sub = parser.add_subparsers(dest="command", required=True)

    diag = sub.add_parser("diagnose", help="Rank likely conditions for a set of symptoms")
    diag.add_argument("text", nargs="?", default=None, help="Free-text description of the symptoms")
    diag.add_argument("--symptom", action="append", help="Symptom id or name (repeatable)")
    diag.add_argument("--age", type=int)
    diag.add_argument("--gender")
    diag.add_argument("--severity", type=int, help="1-10")
    diag.add_argument("--duration-days", type=int)
    diag.add_argument("--user", default=None)
    diag.add_argument("--save", action="store_true", help="Save the result to history")

    hist = sub.add_parser("history", help="Show the merged diagnosis and prescription timeline")
    hist.add_argument("--limit", type=int, default=20)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings()
    logging.basicConfig(level=settings.log_level)

    args = build_parser().parse_args(argv)
    usecase = build_use_case(settings)
    try:
        if args.command == "diagnose":
            return _cmd_diagnose(usecase, args)
        return _cmd_history(usecase, args)
    except DiagnosisCoreError as e:
        print(f"{e.kind.value}: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
