"""
Sync orchestration for one external account.

A run claims the account (single-flight), asks the provider's extraction
adapter for reports, then merges each report into the shared catalog and
upserts the user's attempt. Report-level failures become warnings; only
provider, credential and unexpected infrastructure errors abort the run.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from examsync.core.config import settings
from examsync.core.exceptions import CredentialError, MissingExamIdError, SyncConflictError, UnsupportedProviderError
from examsync.extraction.adapter import ExternalCredentials, ExtractionAdapter, ProgressCallback, get_adapter
from examsync.extraction.types import RawExamReport, ScrapeProgress, SyncPlan
from examsync.models.domain import SyncStatus
from examsync.models.orm import Attempt, Exam, ExternalAccount, Question
from examsync.services.attempts import unresolved_answers, upsert_attempt
from examsync.services.catalog import load_question_map, refresh_exam_header, upsert_exam
from examsync.services.normalizer import normalize_report

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


@dataclass
class SyncFilters:
    only_exam_ids: Optional[List[str]] = None
    force_attempt_exam_ids: List[str] = field(default_factory=list)
    attempts_only: bool = False


@dataclass
class SavedAttempt:
    id: str
    title: str


@dataclass
class SyncResult:
    count: int = 0
    attempts: List[SavedAttempt] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _default_session_factory() -> sessionmaker:
    from examsync.core.database import SessionLocal
    return SessionLocal


def _account_query(user_id: str, provider: str):
    return select(ExternalAccount).where(ExternalAccount.user_id == user_id, ExternalAccount.provider == provider)


def claim_account_sync(session_factory: Callable[[], Session], user_id: str, provider: str, username: str) -> str:
    """Mark the account SYNCING; raises SyncConflictError if a live run holds it."""
    now = _now()
    stale_before = now - timedelta(seconds=settings.SYNC_STALE_AFTER_SECONDS)
    with session_factory() as db:
        account = db.scalar(_account_query(user_id, provider))
        if account is None:
            account = ExternalAccount(user_id=user_id, provider=provider, username=username, sync_status=SyncStatus.IDLE.value)
            try:
                with db.begin_nested():
                    db.add(account)
            except IntegrityError:
                account = db.scalar(_account_query(user_id, provider))
            db.commit()
        claimed = db.execute(
            update(ExternalAccount)
            .where(ExternalAccount.id == account.id,
                   or_(ExternalAccount.sync_status != SyncStatus.SYNCING.value,
                       ExternalAccount.sync_started_at.is_(None),
                       ExternalAccount.sync_started_at < stale_before))
            .values(sync_status=SyncStatus.SYNCING.value, sync_total=0, sync_completed=0, sync_started_at=now,
                    sync_finished_at=None, status_message=None, username=username),
            execution_options=_NO_SYNC,
        )
        if claimed.rowcount != 1:
            db.rollback()
            raise SyncConflictError(user_id, provider)
        db.commit()
        return account.id


def release_account_sync(session_factory: Callable[[], Session], account_id: str, error: Optional[str] = None,
                         credentials_rejected: bool = False) -> None:
    now = _now()
    values: Dict[str, Any] = {"sync_finished_at": now, "status_message": error}
    if error is None:
        values.update(sync_status=SyncStatus.IDLE.value, last_sync_at=now, status="CONNECTED")
    else:
        values["sync_status"] = SyncStatus.ERROR.value
        if credentials_rejected:
            values["status"] = "ERROR"
    with session_factory() as db:
        db.execute(update(ExternalAccount).where(ExternalAccount.id == account_id).values(**values), execution_options=_NO_SYNC)
        db.commit()


def progress_reporter(session_factory: Callable[[], Session], account_id: str,
                      callback: Optional[ProgressCallback] = None) -> ProgressCallback:
    """Best-effort progress sink: failures are logged and never abort the sync."""
    def report(progress: ScrapeProgress) -> None:
        try:
            with session_factory() as db:
                db.execute(update(ExternalAccount).where(ExternalAccount.id == account_id)
                           .values(sync_total=progress.total, sync_completed=progress.completed), execution_options=_NO_SYNC)
                db.commit()
            if callback is not None:
                callback(progress)
        except Exception:
            logger.warning(f"Failed to record sync progress for account {account_id}", exc_info=True)
    return report


def build_sync_plan(db: Session, user_id: str, filters: SyncFilters) -> SyncPlan:
    attempted = set(db.scalars(select(Exam.external_exam_id).join(Attempt, Attempt.exam_id == Exam.id)
                               .where(Attempt.user_id == user_id)))
    attempted -= set(filters.force_attempt_exam_ids or [])
    existing = set(db.scalars(select(Exam.external_exam_id)))
    with_questions = set(db.scalars(select(Exam.external_exam_id).join(Question, Question.exam_id == Exam.id).distinct()))
    return SyncPlan(
        existing_exam_ids=existing,
        force_full_exam_ids=existing - with_questions,
        skip_exam_ids=attempted,
        only_exam_ids=set(filters.only_exam_ids) if filters.only_exam_ids else None,
        attempts_only=filters.attempts_only,
    )


def save_report(session_factory: Callable[[], Session], user_id: str, report: RawExamReport,
                attempts_only: bool = False) -> Tuple[Optional[SavedAttempt], List[str]]:
    """Merge one report: catalog in one transaction, attempt in the next."""
    parsed = normalize_report(report)
    warnings = list(parsed.warnings)
    if not parsed.external_exam_id:
        raise MissingExamIdError(parsed.title)
    with session_factory() as db:
        with db.begin():
            if parsed.questions and not attempts_only:
                merge = upsert_exam(db, parsed)
                exam_id, primary, fallback = merge.exam_id, merge.by_source_number, merge.by_question_number
            else:
                exam = refresh_exam_header(db, parsed)
                if exam is None:
                    warnings.append(f"Exam not found for report {parsed.title}.")
                    return None, warnings
                exam_id, primary, fallback = exam.id, load_question_map(db, exam.id), None
        with db.begin():
            attempt = upsert_attempt(db, user_id, exam_id, primary, parsed.answers, fallback)
            attempt_id = attempt.id
    unmatched = unresolved_answers(primary, parsed.answers, fallback)
    if unmatched:
        warnings.append(f"{len(unmatched)} answers in {parsed.title} did not match a question.")
    return SavedAttempt(id=attempt_id, title=parsed.title), warnings


def _run(session_factory, user_id: str, credentials: ExternalCredentials, filters: SyncFilters,
         adapter: ExtractionAdapter, progress: ProgressCallback) -> SyncResult:
    with session_factory() as db:
        plan = build_sync_plan(db, user_id, filters)
    scrape = adapter.fetch_reports(credentials, plan, progress)
    result = SyncResult(warnings=list(scrape.warnings))
    for report in scrape.reports:
        try:
            saved, warnings = save_report(session_factory, user_id, report, filters.attempts_only)
        except MissingExamIdError:
            result.warnings.append("Skipping report with missing exam id.")
            continue
        except Exception as exc:
            logger.exception(f"Failed to save report {report.title!r} for user {user_id}")
            result.warnings.append(f"Failed to save report {report.title}: {exc}")
            continue
        result.warnings.extend(warnings)
        if saved is not None:
            result.attempts.append(saved)
    result.count = len(result.attempts)
    return result


def sync_external_account(user_id: str, credentials: ExternalCredentials, filters: Optional[SyncFilters] = None, *,
                          session_factory: Optional[Callable[[], Session]] = None,
                          adapter: Optional[ExtractionAdapter] = None,
                          on_progress: Optional[ProgressCallback] = None) -> SyncResult:
    filters = filters or SyncFilters()
    session_factory = session_factory or _default_session_factory()
    if credentials.provider not in settings.SUPPORTED_PROVIDERS:
        raise UnsupportedProviderError(credentials.provider)
    adapter = adapter or get_adapter(credentials.provider)

    account_id = claim_account_sync(session_factory, user_id, credentials.provider, credentials.username)
    logger.info(f"Sync started for user {user_id} on {credentials.provider}")
    try:
        result = _run(session_factory, user_id, credentials, filters, adapter,
                      progress_reporter(session_factory, account_id, on_progress))
    except Exception as exc:
        logger.error(f"Sync failed for user {user_id} on {credentials.provider}: {exc}")
        release_account_sync(session_factory, account_id, error=str(exc) or exc.__class__.__name__,
                             credentials_rejected=isinstance(exc, CredentialError))
        raise
    release_account_sync(session_factory, account_id)
    logger.info(f"Sync finished for user {user_id}: {result.count} attempts, {len(result.warnings)} warnings")
    return result
