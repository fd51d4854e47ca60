"""
Shared exam catalog merge.

Many users sync the same exams concurrently, so rows are merged with targeted
statements instead of read-modify-write on loaded objects:

* content and marking fields: plain UPDATE, last writer wins
* correct_answer: UPDATE ... WHERE correct_answer is unset, first writer wins
* key_update: UPDATE ... WHERE key_update is unset, copied from the row's own
  correct_answer, so an admin revision is never reverted by a resync

Inserts of a new exam or question slot run inside a SAVEPOINT; losing a race
on the unique constraint rolls back only the savepoint and the existing row is
merged instead. Callers own the outer transaction (one per report).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy import Text, or_, select, type_coerce, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from examsync.core.exceptions import MissingExamIdError
from examsync.models.orm import Exam, Question, UNSET_ANSWER_TEXTS
from examsync.services.normalizer import ParsedQuestion, ParsedReport, coerce_source_number, ensure_answer_value, parse_answer_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestionRef:
    id: str
    qtype: str
    key_update: Any = None


@dataclass
class CatalogMerge:
    exam_id: str
    by_source_number: Dict[int, QuestionRef] = field(default_factory=dict)
    by_question_number: Dict[int, QuestionRef] = field(default_factory=dict)
    created: int = 0
    updated: int = 0


def assign_question_numbers(questions: Iterable[ParsedQuestion]) -> List[Tuple[int, ParsedQuestion]]:
    """Pair each question with a unique, stable question_number.

    Valid source numbers are kept, first occurrence wins. Questions with a
    missing, invalid or repeated source number are numbered upward from the
    highest valid source number, in report order.
    """
    questions = list(questions)
    sources = [coerce_source_number(q.source_number) for q in questions]
    ordered = sorted(range(len(questions)), key=lambda i: (sources[i] is None, sources[i] or 0, i))
    taken = set()
    numbered, leftovers = [], []
    for i in ordered:
        if sources[i] is not None and sources[i] not in taken:
            taken.add(sources[i])
            numbered.append((sources[i], questions[i]))
        else:
            leftovers.append(i)
    next_number = max(taken, default=0)
    for i in sorted(leftovers):
        next_number += 1
        numbered.append((next_number, questions[i]))
    return numbered


def _unset(column):
    return or_(column.is_(None), type_coerce(column, Text).in_(UNSET_ANSWER_TEXTS))


def _ref(row: Question) -> QuestionRef:
    return QuestionRef(id=row.id, qtype=row.qtype, key_update=row.key_update)


def _find_exam(session: Session, external_exam_id: str) -> Optional[Exam]:
    return session.scalar(select(Exam).where(Exam.external_exam_id == external_exam_id))


def _get_or_create_exam(session: Session, report: ParsedReport) -> Exam:
    exam = _find_exam(session, report.external_exam_id)
    if exam is not None:
        return exam
    exam = Exam(external_exam_id=report.external_exam_id, title=report.title, exam_date=report.exam_date)
    try:
        with session.begin_nested():
            session.add(exam)
    except IntegrityError:
        logger.info(f"Exam {report.external_exam_id} created concurrently, merging into existing row")
        exam = _find_exam(session, report.external_exam_id)
        if exam is None:
            raise
    return exam


def _content_values(parsed: ParsedQuestion) -> Dict[str, Any]:
    opt_a, opt_b, opt_c, opt_d = parsed.options
    return dict(
        subject=parsed.subject.value, qtype=parsed.qtype.value, question_content=parsed.question_content,
        option_content_a=opt_a, option_content_b=opt_b, option_content_c=opt_c, option_content_d=opt_d,
        has_partial=parsed.has_partial, correct_marking=parsed.marking.correct,
        incorrect_marking=parsed.marking.incorrect, unattempted_marking=parsed.marking.unattempted,
    )


def _insert_question(session: Session, exam_id: str, number: int, parsed: ParsedQuestion, key: Any) -> Optional[Question]:
    row = Question(exam_id=exam_id, question_number=number, correct_answer=key, key_update=key, **_content_values(parsed))
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        return None
    return row


def _merge_question(session: Session, question_id: str, parsed: ParsedQuestion, key: Any) -> None:
    opts = {"synchronize_session": False}
    session.execute(update(Question).where(Question.id == question_id).values(**_content_values(parsed)), execution_options=opts)
    session.execute(update(Question).where(Question.id == question_id, _unset(Question.correct_answer))
                    .values(correct_answer=key), execution_options=opts)
    session.execute(update(Question).where(Question.id == question_id, _unset(Question.key_update))
                    .values(key_update=Question.correct_answer), execution_options=opts)


def _existing_questions(session: Session, exam_id: str) -> Dict[int, Question]:
    rows = session.scalars(select(Question).where(Question.exam_id == exam_id))
    return {row.question_number: row for row in rows}


def upsert_exam(session: Session, report: ParsedReport) -> CatalogMerge:
    if not report.external_exam_id:
        raise MissingExamIdError(report.title)
    exam = _get_or_create_exam(session, report)
    exam.title = report.title
    exam.exam_date = report.exam_date
    session.flush()

    fallback_keys = {a.source_number: a.correct_answer_raw for a in report.answers
                     if a.source_number is not None and a.correct_answer_raw}
    existing = _existing_questions(session, exam.id)
    merge = CatalogMerge(exam_id=exam.id)
    touched: Dict[int, Question] = {}

    for number, parsed in assign_question_numbers(report.questions):
        raw_key = parsed.correct_answer_raw or fallback_keys.get(coerce_source_number(parsed.source_number))
        key = ensure_answer_value(parse_answer_value(raw_key, parsed.qtype), parsed.qtype)
        row = existing.get(number)
        if row is None:
            row = _insert_question(session, exam.id, number, parsed, key)
            if row is not None:
                existing[number] = row
                merge.created += 1
            else:
                row = session.scalar(select(Question).where(Question.exam_id == exam.id, Question.question_number == number))
                _merge_question(session, row.id, parsed, key)
                merge.updated += 1
        else:
            _merge_question(session, row.id, parsed, key)
            merge.updated += 1
        touched[number] = row
        source = coerce_source_number(parsed.source_number)
        merge.by_source_number.setdefault(source if source is not None else number, row)

    for row in touched.values():
        session.expire(row)
    for number, row in touched.items():
        merge.by_question_number[number] = _ref(row)
    merge.by_source_number = {source: _ref(row) for source, row in merge.by_source_number.items()}
    logger.info(f"Merged exam {report.external_exam_id}: {merge.created} created, {merge.updated} updated")
    return merge


def load_question_map(session: Session, exam_id: str) -> Dict[int, QuestionRef]:
    rows = session.scalars(select(Question).where(Question.exam_id == exam_id).order_by(Question.question_number))
    return {row.question_number: _ref(row) for row in rows}


def refresh_exam_header(session: Session, report: ParsedReport) -> Optional[Exam]:
    """Attempts-only path: refresh title/date of a catalogued exam, None if unknown."""
    if not report.external_exam_id:
        raise MissingExamIdError(report.title)
    exam = _find_exam(session, report.external_exam_id)
    if exam is None:
        return None
    exam.title = report.title
    exam.exam_date = report.exam_date
    session.flush()
    return exam
