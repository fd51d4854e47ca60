import logging
from typing import Dict, Iterable, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from examsync.models.domain import QuestionRecord, TestRecord
from examsync.models.orm import Attempt, Exam, Question
from examsync.services.catalog import QuestionRef
from examsync.services.normalizer import ScrapedAnswer, parse_answer_value

logger = logging.getLogger(__name__)


def _find_attempt(session: Session, user_id: str, exam_id: str) -> Optional[Attempt]:
    return session.scalar(select(Attempt).where(Attempt.user_id == user_id, Attempt.exam_id == exam_id))


def resolve_answer(answer: ScrapedAnswer, question_map: Dict[int, QuestionRef],
                   fallback_map: Optional[Dict[int, QuestionRef]] = None) -> Optional[QuestionRef]:
    if answer.source_number is None:
        return None
    return question_map.get(answer.source_number) or (fallback_map or {}).get(answer.source_number)


def unresolved_answers(question_map: Dict[int, QuestionRef], answers: Iterable[ScrapedAnswer],
                       fallback_map: Optional[Dict[int, QuestionRef]] = None) -> List[ScrapedAnswer]:
    return [answer for answer in answers if resolve_answer(answer, question_map, fallback_map) is None]


def build_answer_maps(question_map: Dict[int, QuestionRef], answers: Iterable[ScrapedAnswer],
                      fallback_map: Optional[Dict[int, QuestionRef]] = None):
    """Answers/timings keyed by question id, one entry per known question."""
    fallback_map = fallback_map or {}
    answer_values: Dict[str, object] = {}
    timings: Dict[str, int] = {}
    for ref in list(question_map.values()) + list(fallback_map.values()):
        answer_values.setdefault(ref.id, None)
        timings.setdefault(ref.id, 0)
    for answer in answers:
        ref = resolve_answer(answer, question_map, fallback_map)
        if ref is None:
            continue
        answer_values[ref.id] = parse_answer_value(answer.selected_answer, ref.qtype)
        timings[ref.id] = answer.time_spent_sec
    return answer_values, timings


def upsert_attempt(session: Session, user_id: str, exam_id: str, question_map: Dict[int, QuestionRef],
                   answers: Iterable[ScrapedAnswer], fallback_map: Optional[Dict[int, QuestionRef]] = None) -> Attempt:
    answer_values, timings = build_answer_maps(question_map, answers, fallback_map)
    attempt = _find_attempt(session, user_id, exam_id)
    if attempt is None:
        attempt = Attempt(user_id=user_id, exam_id=exam_id, answers=answer_values, timings=timings, bookmarks={})
        try:
            with session.begin_nested():
                session.add(attempt)
            return attempt
        except IntegrityError:
            logger.info(f"Attempt for user {user_id} on exam {exam_id} created concurrently, overwriting it")
            attempt = _find_attempt(session, user_id, exam_id)
            if attempt is None:
                raise
    attempt.answers = answer_values
    attempt.timings = timings
    session.flush()
    return attempt


def set_bookmark(session: Session, attempt: Attempt, question_id: str, flag: bool) -> Dict[str, bool]:
    bookmarks = dict(attempt.bookmarks or {})
    if flag:
        bookmarks[question_id] = True
    else:
        bookmarks.pop(question_id, None)
    attempt.bookmarks = bookmarks
    session.commit()
    return bookmarks


def to_question_record(row: Question) -> QuestionRecord:
    return QuestionRecord(
        id=row.id, question_number=row.question_number, subject=row.subject, qtype=row.qtype,
        correct_answer=row.correct_answer, key_update=row.key_update, correct_marking=row.correct_marking,
        incorrect_marking=row.incorrect_marking, unattempted_marking=row.unattempted_marking,
        has_partial=row.has_partial, question_content=row.question_content,
        option_content_a=row.option_content_a, option_content_b=row.option_content_b,
        option_content_c=row.option_content_c, option_content_d=row.option_content_d,
        last_key_update_time=row.last_key_update_time,
    )


def build_test_record(session: Session, attempt: Attempt) -> TestRecord:
    exam = session.get(Exam, attempt.exam_id)
    rows = session.scalars(select(Question).where(Question.exam_id == attempt.exam_id).order_by(Question.question_number))
    return TestRecord(
        id=attempt.id, user_id=attempt.user_id, exam_id=attempt.exam_id,
        title=exam.title if exam else "", exam_date=exam.exam_date if exam else "",
        questions=[to_question_record(row) for row in rows],
        answers=dict(attempt.answers or {}), timings=dict(attempt.timings or {}), bookmarks=dict(attempt.bookmarks or {}),
    )


def list_attempts(session: Session, user_id: str) -> List[Attempt]:
    stmt = select(Attempt).join(Exam, Exam.id == Attempt.exam_id).where(Attempt.user_id == user_id).order_by(Exam.exam_date.desc())
    return list(session.scalars(stmt))
