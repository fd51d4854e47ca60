"""
Grading engine: per-question status and marks, plus the whole-attempt analysis.

All functions are pure. `test` is a TestRecord (or anything with `answers`,
`timings` and `questions`); questions may be QuestionRecords or ORM rows.
"""
import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from examsync.models.domain import AnswerValue, QuestionStatus, QuestionType, Subject
from examsync.services.answer_keys import AnswerKey, is_bonus_key, parse_key, to_number, to_option_set

SUBJECT_ORDER = [Subject.PHYSICS.value, Subject.CHEMISTRY.value, Subject.MATHEMATICS.value]
FAST_WRONG_FACTOR = 0.75
SLOW_WRONG_FACTOR = 1.35
TIME_BUCKETS = [("<=30s", 30), ("31-60s", 60), ("1-2m", 120), ("2-3m", 180), (">3m", math.inf)]


@dataclass
class QuestionSnapshot:
    id: str
    number: int
    subject: str
    qtype: str
    status: QuestionStatus
    time: float
    attempted: bool


@dataclass
class Breakdown:
    id: str
    name: str
    total: int = 0
    attempted: int = 0
    correct: int = 0
    partial: int = 0
    incorrect: int = 0
    unattempted: int = 0
    accuracy: float = 0.0
    avg_time: float = 0.0
    score: float = 0


@dataclass
class TimeBucket:
    label: str
    count: int
    pct: float


@dataclass
class KeyChange:
    id: str
    number: int
    subject: str
    original: AnswerValue
    current: AnswerValue


@dataclass
class Analysis:
    total: int = 0
    attempted: int = 0
    correct: int = 0
    partial: int = 0
    incorrect: int = 0
    unattempted: int = 0
    accuracy: float = 0.0
    attempt_rate: float = 0.0
    avg_time: float = 0.0
    avg_attempted_time: float = 0.0
    total_time: float = 0
    attempted_time: float = 0
    per_section: List[Breakdown] = field(default_factory=list)
    per_type: List[Breakdown] = field(default_factory=list)
    time_buckets: List[TimeBucket] = field(default_factory=list)
    time_median: float = 0
    time_p75: float = 0
    time_min: float = 0
    time_max: float = 0
    longest_success: int = 0
    longest_miss: int = 0
    slowest_questions: List[QuestionSnapshot] = field(default_factory=list)
    fastest_questions: List[QuestionSnapshot] = field(default_factory=list)
    fastest_incorrect: List[QuestionSnapshot] = field(default_factory=list)
    key_changes: List[KeyChange] = field(default_factory=list)
    latest_key_update: Optional[datetime] = None
    score_original: float = 0
    score_current: float = 0
    score_delta: float = 0
    fast_wrong: int = 0
    slow_wrong: int = 0


def _round(value: float, digits: int = 1) -> float:
    return round(value, digits)


def get_accuracy(correct: int, attempted: int) -> float:
    return 0.0 if attempted == 0 else _round(correct / attempted * 100)


def get_percent(value: float, total: float) -> float:
    return 0.0 if total == 0 else _round(value / total * 100)


def get_percentile(values: List[float], percentile: float) -> float:
    """Nearest-rank percentile."""
    if not values:
        return 0
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, math.ceil(percentile / 100 * len(ordered)) - 1))
    return ordered[index]


def get_answer_for_question(test, question) -> AnswerValue:
    return (test.answers or {}).get(question.id)


def get_time_for_question(test, question) -> float:
    value = to_number((test.timings or {}).get(question.id))
    return 0 if value is None else value


def is_unattempted(value: AnswerValue, qtype: Any) -> bool:
    if value is None:
        return True
    return qtype == QuestionType.MAQ and isinstance(value, list) and len(value) == 0


def _key_matches(selected: AnswerValue, key: AnswerKey, qtype: Any) -> bool:
    if key.bonus:
        return True
    if is_unattempted(selected, qtype):
        return False
    if qtype == QuestionType.NAT:
        number = to_number(selected)
        if number is None:
            return False
        return any(alt.contains(number) for alt in key.numeric_alternatives)
    chosen = to_option_set(selected)
    groups = key.option_groups
    if not chosen or not groups:
        return False
    if qtype == QuestionType.MAQ:
        return any(chosen == group for group in groups)
    return any(chosen & group for group in groups)


def matches_key(selected: AnswerValue, key: AnswerValue, qtype: Any) -> bool:
    return _key_matches(selected, parse_key(key, qtype), qtype)


def _partial_score(question, selected: AnswerValue, key: AnswerKey) -> float:
    chosen = to_option_set(selected)
    if not chosen:
        return question.unattempted_marking
    best = question.incorrect_marking
    for group in key.option_groups:
        wrong_picks = chosen - group
        if wrong_picks:
            score = question.incorrect_marking
        elif chosen == group:
            score = question.correct_marking
        else:
            score = len(chosen)
        best = max(best, score)
    return best


def compute_partial_score(question, selected: AnswerValue, key: AnswerValue) -> float:
    return _partial_score(question, selected, parse_key(key, question.qtype))


def get_question_mark(test, question, use_original_key: bool = False) -> float:
    selected = get_answer_for_question(test, question)
    raw_key = question.correct_answer if use_original_key else question.key_update
    if is_bonus_key(raw_key):
        return question.correct_marking
    if is_unattempted(selected, question.qtype):
        return question.unattempted_marking
    key = parse_key(raw_key, question.qtype)
    if question.qtype == QuestionType.MAQ:
        return _partial_score(question, selected, key)
    return question.correct_marking if _key_matches(selected, key, question.qtype) else question.incorrect_marking


def get_question_status(test, question) -> QuestionStatus:
    selected = get_answer_for_question(test, question)
    if is_bonus_key(question.key_update):
        return QuestionStatus.CORRECT
    if is_unattempted(selected, question.qtype):
        return QuestionStatus.UNATTEMPTED
    key = parse_key(question.key_update, question.qtype)
    if _key_matches(selected, key, question.qtype):
        return QuestionStatus.CORRECT
    if question.qtype == QuestionType.MAQ:
        partial = _partial_score(question, selected, key)
        if question.unattempted_marking < partial < question.correct_marking:
            return QuestionStatus.PARTIAL
    return QuestionStatus.INCORRECT


def format_answer_value(value: AnswerValue) -> str:
    if value is None:
        return "-"
    if is_bonus_key(value):
        return "Bonus"
    if isinstance(value, list):
        return ",".join(str(v) for v in value) or "-"
    if isinstance(value, dict) and "min" in value and "max" in value:
        if value["min"] == value["max"]:
            return str(value["min"])
        return f"{value['min']}-{value['max']}"
    return str(value)


def _json_equals(a: Any, b: Any) -> bool:
    return json.dumps(a, sort_keys=True) == json.dumps(b, sort_keys=True)


def _is_attempted(test, question) -> bool:
    return is_bonus_key(question.key_update) or not is_unattempted(get_answer_for_question(test, question), question.qtype)


def _finish_breakdown(entry: Breakdown, time_spent: float) -> Breakdown:
    entry.incorrect = max(entry.attempted - entry.correct - entry.partial, 0)
    entry.unattempted = entry.total - entry.attempted
    entry.accuracy = get_accuracy(entry.correct, entry.attempted)
    entry.avg_time = _round(time_spent / entry.total if entry.total else 0)
    return entry


def build_analysis(test) -> Analysis:
    questions = sorted(test.questions, key=lambda q: q.question_number)
    result = Analysis(total=len(questions))
    snapshots: List[QuestionSnapshot] = []
    sections: Dict[str, Breakdown] = {}
    types: Dict[str, Breakdown] = {}
    section_time: Dict[str, float] = {}
    type_time: Dict[str, float] = {}

    for question in questions:
        status = get_question_status(test, question)
        time_spent = get_time_for_question(test, question)
        attempted = _is_attempted(test, question)
        mark = get_question_mark(test, question)
        result.score_current += mark
        result.score_original += get_question_mark(test, question, use_original_key=True)
        result.total_time += time_spent
        if attempted:
            result.attempted += 1
            result.attempted_time += time_spent
        if status == QuestionStatus.CORRECT:
            result.correct += 1
        elif status == QuestionStatus.PARTIAL:
            result.partial += 1

        subject, qtype = str(_value(question.subject)), str(_value(question.qtype))
        for bucket, times, name, with_score in ((sections, section_time, subject, True), (types, type_time, qtype, False)):
            entry = bucket.setdefault(name, Breakdown(id=name, name=name))
            entry.total += 1
            entry.attempted += int(attempted)
            entry.correct += int(status == QuestionStatus.CORRECT)
            entry.partial += int(status == QuestionStatus.PARTIAL)
            if with_score:
                entry.score += mark
            times[name] = times.get(name, 0) + time_spent

        snapshots.append(QuestionSnapshot(id=question.id, number=question.question_number, subject=subject,
                                          qtype=qtype, status=status, time=time_spent, attempted=attempted))

        if not _json_equals(question.correct_answer, question.key_update):
            result.key_changes.append(KeyChange(id=question.id, number=question.question_number, subject=subject,
                                                original=question.correct_answer, current=question.key_update))
            edited_at = question.last_key_update_time
            if edited_at and (result.latest_key_update is None or edited_at > result.latest_key_update):
                result.latest_key_update = edited_at

    total = result.total
    result.incorrect = max(result.attempted - result.correct - result.partial, 0)
    result.unattempted = total - result.attempted
    result.accuracy = get_accuracy(result.correct, result.attempted)
    result.attempt_rate = get_percent(result.attempted, total)
    avg_time = result.total_time / total if total else 0
    avg_attempted_time = result.attempted_time / result.attempted if result.attempted else 0
    result.avg_time = _round(avg_time)
    result.avg_attempted_time = _round(avg_attempted_time)
    result.score_delta = result.score_current - result.score_original
    result.per_section = [_finish_breakdown(entry, section_time[name]) for name, entry in sections.items()]
    result.per_type = [_finish_breakdown(entry, type_time[name]) for name, entry in types.items()]

    base_time = avg_attempted_time or avg_time
    wrong = [s for s in snapshots if s.status == QuestionStatus.INCORRECT]
    result.fast_wrong = sum(1 for s in wrong if s.time < base_time * FAST_WRONG_FACTOR)
    result.slow_wrong = sum(1 for s in wrong if s.time > base_time * SLOW_WRONG_FACTOR)

    attempted_snapshots = [s for s in snapshots if s.attempted]
    times = [s.time for s in attempted_snapshots]
    result.time_median = _round(get_percentile(times, 50))
    result.time_p75 = _round(get_percentile(times, 75))
    result.time_min = min(times) if times else 0
    result.time_max = max(times) if times else 0
    lower = -math.inf
    for label, upper in TIME_BUCKETS:
        count = sum(1 for t in times if lower < t <= upper)
        result.time_buckets.append(TimeBucket(label=label, count=count, pct=get_percent(count, len(times))))
        lower = upper

    success_run = miss_run = 0
    for snap in snapshots:
        if snap.status in (QuestionStatus.CORRECT, QuestionStatus.PARTIAL):
            success_run, miss_run = success_run + 1, 0
            result.longest_success = max(result.longest_success, success_run)
        else:
            success_run, miss_run = 0, miss_run + 1
            result.longest_miss = max(result.longest_miss, miss_run)

    result.slowest_questions = sorted(attempted_snapshots, key=lambda s: -s.time)[:5]
    result.fastest_questions = sorted(attempted_snapshots, key=lambda s: s.time)[:5]
    result.fastest_incorrect = sorted((s for s in attempted_snapshots if s.status == QuestionStatus.INCORRECT), key=lambda s: s.time)[:4]
    return result


def _value(item: Any) -> Any:
    return item.value if hasattr(item, "value") else item


def _subject_rank(subject: Any):
    name = str(_value(subject))
    if name in SUBJECT_ORDER:
        return (0, SUBJECT_ORDER.index(name), "")
    return (1, 0, name)


def build_display_questions(questions) -> List[Dict[str, Any]]:
    """Questions ordered for display: Physics, Chemistry, Mathematics, then the rest."""
    ordered = sorted(questions, key=lambda q: (_subject_rank(q.subject), q.question_number))
    return [{"display_number": index + 1, "question": question} for index, question in enumerate(ordered)]
