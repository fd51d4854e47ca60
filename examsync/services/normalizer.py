"""
Normalization of scraped portal fields into the canonical question/answer model.

Everything here is pure and total: malformed input degrades to None (or a
placeholder) and never raises.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple
from examsync.extraction.dates import normalize_date
from examsync.extraction.types import RawAnswer, RawExamReport, RawQuestion
from examsync.models.domain import AnswerValue, Marking, QuestionType, Subject

_LABEL_RE = re.compile(r"^(?:(?:YOUR\s+ANSWER|CORRECT\s+ANS(?:WER)?|ANSWER|ANS)\s*(?:[:.]|-(?!\d))?\s*)+", re.IGNORECASE)
_NULL_ANSWERS = {"", "-", "NA", "N/A", "NOT ATTEMPTED"}
_OPTION_SET_RE = re.compile(r"^[\s,;/()\[\]]*(?:[A-D][\s,;/()\[\]]*)+$")
RANGE_RE = re.compile(r"(-?\d+(?:\.\d+)?)\s*(?:to|-)\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_NUMERIC_ANSWER_RE = re.compile(r"^-?\d+(?:\.\d+)?(?:\s*(?:TO|-)\s*-?\d+(?:\.\d+)?)?$", re.IGNORECASE)
MINUS_VARIANTS = str.maketrans({"−": "-", "–": "-", "—": "-"})

_MARKING = {
    QuestionType.VMAQ: Marking(correct=3, incorrect=-1, unattempted=0),
    QuestionType.MAQ: Marking(correct=4, incorrect=-2, unattempted=0),
    QuestionType.NAT: Marking(correct=4, incorrect=-1, unattempted=0),
    QuestionType.MCQ: Marking(correct=4, incorrect=-1, unattempted=0),
}


@dataclass
class ParsedQuestion:
    source_number: Optional[int]
    subject: Subject
    qtype: QuestionType
    question_content: str
    options: List[Optional[str]]
    has_partial: bool
    marking: Marking
    correct_answer_raw: Optional[str]


@dataclass
class ScrapedAnswer:
    source_number: Optional[int]
    selected_answer: Optional[str]
    correct_answer_raw: Optional[str]
    time_spent_sec: int = 0


@dataclass
class ParsedReport:
    external_exam_id: Optional[str]
    title: str
    exam_date: str
    questions: List[ParsedQuestion] = field(default_factory=list)
    answers: List[ScrapedAnswer] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def normalize_answer(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = re.sub(r"\s+", " ", str(raw)).strip()
    text = _LABEL_RE.sub("", text).strip().upper()
    if text in _NULL_ANSWERS:
        return None
    if _OPTION_SET_RE.match(text):
        return ",".join(sorted(set(re.findall(r"[A-D]", text))))
    return text


def is_numeric_answer(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(_NUMERIC_ANSWER_RE.match(value.translate(MINUS_VARIANTS).strip()))


def _type_from_metadata(meta_text: Optional[str]) -> Optional[QuestionType]:
    token = (meta_text or "").upper()
    if not token:
        return None
    if "VMAQ" in token:
        return QuestionType.VMAQ
    if any(t in token for t in ("MAQ", "MSQ", "MULT")):
        return QuestionType.MAQ
    if any(t in token for t in ("NAT", "NUM", "INT")):
        return QuestionType.NAT
    if any(t in token for t in ("MCQ", "SCQ", "SINGLE")):
        return QuestionType.MCQ
    return None


def infer_question_type(meta_text: Optional[str], has_options: bool, correct_answer_raw: Optional[str]) -> QuestionType:
    explicit = _type_from_metadata(meta_text)
    if explicit is not None:
        return explicit
    if not has_options:
        return QuestionType.NAT
    answer = normalize_answer(correct_answer_raw)
    if answer and "," in answer:
        return QuestionType.MAQ
    if is_numeric_answer(answer):
        return QuestionType.NAT
    return QuestionType.MCQ


def get_marking_for_type(qtype: Any) -> Marking:
    try:
        return _MARKING[QuestionType(qtype)]
    except ValueError:
        return _MARKING[QuestionType.MCQ]


def _to_number(text: str) -> float:
    value = float(text)
    return int(value) if value.is_integer() else value


def parse_numeric_value(raw: Any) -> AnswerValue:
    """Parse a NAT answer: a number, an inclusive {"min", "max"} range, or None."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return _to_number(str(raw)) if math.isfinite(raw) else None
    text = str(raw).translate(MINUS_VARIANTS).strip()
    if not text:
        return None
    rng = RANGE_RE.search(text)
    if rng:
        lo, hi = _to_number(rng.group(1)), _to_number(rng.group(2))
        lo, hi = min(lo, hi), max(lo, hi)
        return lo if lo == hi else {"min": lo, "max": hi}
    single = _NUMBER_RE.search(text)
    return _to_number(single.group(0)) if single else None


def parse_answer_value(raw: Any, qtype: Any) -> AnswerValue:
    if raw is None:
        return None
    if qtype == QuestionType.NAT:
        return parse_numeric_value(raw)
    if isinstance(raw, (list, tuple)):
        raw = ",".join(str(part) for part in raw)
    tokens = [t.strip().upper() for t in str(raw).split(",") if t.strip()]
    if not tokens:
        return None
    if qtype == QuestionType.MAQ:
        if len(tokens) == 1 and re.fullmatch(r"[A-Z]+", tokens[0]):
            tokens = list(tokens[0])
        return sorted(set(tokens))
    return tokens[0]


def ensure_answer_value(value: AnswerValue, qtype: Any) -> AnswerValue:
    if value is not None:
        return value
    if qtype == QuestionType.MAQ:
        return []
    if qtype == QuestionType.NAT:
        return 0
    return ""


def normalize_subject(label: Optional[str]) -> Optional[Subject]:
    token = (label or "").strip().upper()
    if token.startswith("PHY"):
        return Subject.PHYSICS
    if token.startswith("CHEM"):
        return Subject.CHEMISTRY
    if token.startswith("MAT"):
        return Subject.MATHEMATICS
    return None


def coerce_source_number(value: Any) -> Optional[int]:
    """Positive integer ordinal, or None for missing/invalid source numbers."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer() or number <= 0:
        return None
    return int(number)


def coerce_seconds(value: Any) -> int:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(seconds):
        return 0
    return max(0, int(round(seconds)))


def normalize_question(raw: RawQuestion) -> Tuple[ParsedQuestion, Optional[str]]:
    source_number = coerce_source_number(raw.source_number)
    warning = None
    subject = normalize_subject(raw.subject_label)
    if subject is None:
        subject = Subject.UNKNOWN
        warning = f"Unknown subject for question {source_number if source_number is not None else raw.source_number}."
    correct = normalize_answer(raw.correct_answer_raw)
    qtype = infer_question_type(raw.type_hint, raw.has_options, correct)
    options = [None, None, None, None] if qtype == QuestionType.NAT else [(opt or "").strip() or None for opt in raw.options]
    parsed = ParsedQuestion(
        source_number=source_number,
        subject=subject,
        qtype=qtype,
        question_content=(raw.question_content or "").strip(),
        options=options,
        has_partial=qtype == QuestionType.MAQ,
        marking=get_marking_for_type(qtype),
        correct_answer_raw=correct,
    )
    return parsed, warning


def normalize_answer_row(raw: RawAnswer) -> ScrapedAnswer:
    return ScrapedAnswer(
        source_number=coerce_source_number(raw.source_number),
        selected_answer=normalize_answer(raw.selected_answer_raw),
        correct_answer_raw=normalize_answer(raw.correct_answer_raw),
        time_spent_sec=coerce_seconds(raw.time_spent_sec),
    )


def normalize_report(report: RawExamReport) -> ParsedReport:
    external_id = str(report.external_exam_id).strip() if report.external_exam_id is not None else ""
    parsed = ParsedReport(
        external_exam_id=external_id or None,
        title=(report.title or "").strip() or "Untitled exam",
        exam_date=normalize_date(report.exam_date),
    )
    for raw in report.questions:
        question, warning = normalize_question(raw)
        parsed.questions.append(question)
        if warning:
            parsed.warnings.append(warning)
    parsed.answers = [normalize_answer_row(raw) for raw in report.answers]
    return parsed
