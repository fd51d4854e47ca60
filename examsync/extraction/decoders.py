"""
Decoders for the portal's question-wise JSON and HTML report pages.

The portal is inconsistent about key names, so every field is read through an
ordered list of probes. The first probe that yields a value wins and the result
records which probe matched, which keeps each shape independently testable.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from bs4 import BeautifulSoup
from examsync.extraction.dates import normalize_date
from examsync.extraction.types import RawAnswer, RawExamReport, RawQuestion

logger = logging.getLogger(__name__)

Probe = Callable[[Mapping[str, Any]], Any]


@dataclass(frozen=True)
class Decoded:
    probe: str
    value: Any


def first_match(row: Mapping[str, Any], probes: Sequence[Tuple[str, Probe]]) -> Optional[Decoded]:
    for name, probe in probes:
        value = probe(row)
        if value is not None:
            return Decoded(name, value)
    return None


def extract_oid(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping) and isinstance(value.get("$oid"), str):
        return value["$oid"]
    return None


def _string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _string_or_number(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value) if math.isfinite(value) else None
    return _string(value)


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def _leading_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    match = re.match(r"\s*(-?\d+)", str(value))
    return int(match.group(1)) if match else None


def _key(name: str) -> Probe:
    return lambda row: row.get(name)


def _first_key(*names: str) -> Probe:
    def probe(row):
        for name in names:
            if row.get(name) is not None:
                return row[name]
        return None
    return probe


SOURCE_NUMBER_PROBES: List[Tuple[str, Probe]] = [
    ("__order", lambda row: int(_finite(row.get("__order"))) + 1 if _finite(row.get("__order")) is not None else None),
    ("question_no", lambda row: _leading_int(row.get("question_no"))),
    ("question_number", lambda row: _leading_int(row.get("question_number"))),
]

QUESTION_ID_PROBES: List[Tuple[str, Probe]] = [
    ("_id", lambda row: extract_oid(row.get("_id"))),
    ("id", lambda row: extract_oid(row.get("id"))),
    ("question_id", lambda row: extract_oid(row.get("question_id"))),
]

KEY_PROBES: List[Tuple[str, Probe]] = [("ans", lambda row: _string_or_number(row.get("ans")))]

SELECTION_PROBES: List[Tuple[str, Probe]] = [("std_ans", lambda row: _string_or_number(row.get("std_ans")))]

SECONDS_PROBES: List[Tuple[str, Probe]] = [("time_taken", lambda row: _leading_int(row.get("time_taken")))]

DATE_KEYS = ("created", "created_at", "test_date", "exam_date", "examDate")
LISTING_DATE_KEYS = ("test_date", "exam_date", "examDate", "date", "created_at", "created", "start_date", "startDate")


def _subject_probes(subject_titles: Mapping[str, str], subject_map: Mapping[str, Any], question_id: Optional[str]):
    return [
        ("subject_ref", lambda row: subject_titles.get(extract_oid(row.get("subject")) or "")),
        ("subjectmap", lambda row: subject_titles.get(extract_oid(subject_map.get(question_id or "")) or "")),
        ("subject_title", lambda row: _string(row.get("subject_title"))),
        ("subject_name", lambda row: _string(row.get("subject_name"))),
    ]


def _subject_titles(payload: Mapping[str, Any]) -> Dict[str, str]:
    titles = {}
    for entry in payload.get("subject") or []:
        if not isinstance(entry, Mapping):
            continue
        subject_id = extract_oid(entry.get("_id"))
        title = _string(entry.get("title")) or _string(entry.get("name"))
        if subject_id and title:
            titles[subject_id] = title
    return titles


@dataclass
class QuestionwiseResult:
    questions: List[RawQuestion] = field(default_factory=list)
    answers: List[RawAnswer] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def decode_questionwise_payload(payload: Any, include_correct_answer: bool = True) -> QuestionwiseResult:
    result = QuestionwiseResult()
    if not isinstance(payload, Mapping):
        return result
    subject_titles = _subject_titles(payload)
    subject_map = payload.get("subjectmap") if isinstance(payload.get("subjectmap"), Mapping) else {}
    rows = payload.get("data") if isinstance(payload.get("data"), list) else []

    for row in rows:
        if not isinstance(row, Mapping):
            continue
        number = first_match(row, SOURCE_NUMBER_PROBES)
        if number is None:
            result.warnings.append("Skipping question with missing order.")
            continue
        question_id = first_match(row, QUESTION_ID_PROBES)
        question_id = question_id.value if question_id else str(number.value)
        subject = first_match(row, _subject_probes(subject_titles, subject_map, question_id))
        key = first_match(row, KEY_PROBES) if include_correct_answer else None
        key_text = key.value if key else None

        result.questions.append(RawQuestion(
            source_number=number.value,
            subject_label=subject.value if subject else None,
            type_hint=_string(row.get("question_type")),
            question_content=_string(row.get("question")) or "",
            option_a=_string(row.get("opt1")),
            option_b=_string(row.get("opt2")),
            option_c=_string(row.get("opt3")),
            option_d=_string(row.get("opt4")),
            correct_answer_raw=key_text,
            source_id=question_id,
        ))

        status = row.get("ans_status") if isinstance(row.get("ans_status"), str) else ""
        selection = None if "unattempt" in status.lower() else first_match(row, SELECTION_PROBES)
        seconds = first_match(row, SECONDS_PROBES)
        result.answers.append(RawAnswer(
            source_number=number.value,
            selected_answer_raw=selection.value if selection else None,
            correct_answer_raw=key_text,
            time_spent_sec=seconds.value if seconds else 0,
        ))
    return result


def _date_value(row: Mapping[str, Any], keys: Sequence[str]) -> Optional[str]:
    value = _first_key(*keys)(row)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return normalize_date(value)


def decode_exam_date(payload: Any) -> Optional[str]:
    if not isinstance(payload, Mapping):
        return None
    direct = _date_value(payload, DATE_KEYS)
    if direct:
        return direct
    for row in payload.get("data") or []:
        if isinstance(row, Mapping):
            candidate = _date_value(row, DATE_KEYS)
            if candidate:
                return candidate
    return None


def extract_tests_list(payload: Any) -> List[Mapping[str, Any]]:
    if not isinstance(payload, Mapping):
        return []
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
    series = data.get("test_series") or data.get("testSeries")
    if isinstance(series, list):
        tests = []
        for entry in series:
            if isinstance(entry, Mapping):
                listed = _first_key("all_tests", "tests", "allTests")(entry)
                tests.extend(listed if isinstance(listed, list) else [])
        if tests:
            return tests
    for candidate in (data.get("all_tests"), data.get("allTests"), data.get("tests"),
                      payload.get("all_tests"), payload.get("allTests"), payload.get("tests")):
        if isinstance(candidate, list):
            return candidate
    return []


@dataclass
class TestListing:
    __test__ = False
    title: str
    report_id: str
    exam_date: str


def decode_test_listing(payload: Any) -> List[TestListing]:
    listings = []
    for index, entry in enumerate(extract_tests_list(payload)):
        if not isinstance(entry, Mapping):
            continue
        title = next((t.strip() for t in (entry.get("test_name"), entry.get("title"), entry.get("name")) if _string(t)), f"Test {index + 1}")
        report_id = extract_oid(_first_key("_id", "id", "test_id", "testId")(entry)) or ""
        listings.append(TestListing(title=title, report_id=report_id,
                                    exam_date=_date_value(entry, LISTING_DATE_KEYS) or normalize_date(None)))
    return listings


HEADER_PROBES = [
    ("number", lambda text: "question" in text and ("no" in text or "#" in text)),
    ("selected", lambda text: any(t in text for t in ("your", "selected", "marked", "given"))),
    ("correct", lambda text: "correct" in text),
    ("time", lambda text: "time" in text or "duration" in text),
]


def _cell_text(cell) -> str:
    return re.sub(r"\s+", " ", cell.get_text(" ")).strip()


def locate_answer_columns(headers: Sequence[str]) -> Dict[str, int]:
    columns = {"number": 0, "correct": 1, "selected": 2, "time": 3}
    for index, text in enumerate(label.lower() for label in headers):
        if not text:
            continue
        for name, probe in HEADER_PROBES:
            if probe(text):
                columns[name] = index
                break
    return columns


def _column(texts: Sequence[str], columns: Mapping[str, int], name: str) -> str:
    index = columns[name]
    return texts[index] if index < len(texts) else ""


def decode_answer_table(html: str, include_correct_answer: bool = True) -> List[RawAnswer]:
    soup = BeautifulSoup(html or "", "html.parser")
    table = soup.select_one(".reportqs table") or soup.find("table")
    if table is None:
        return []
    columns = locate_answer_columns([_cell_text(th) for th in table.select("thead th")])
    body_rows = table.select("tbody tr") or table.find_all("tr")
    answers = []
    for row in body_rows:
        cells = row.find_all("td")
        if len(cells) < 2:
            continue
        texts = [_cell_text(cell) for cell in cells]
        digits = re.sub(r"\D", "", _column(texts, columns, "number"))
        if not digits:
            continue
        correct = _column(texts, columns, "correct") or None
        answers.append(RawAnswer(
            source_number=int(digits),
            selected_answer_raw=_column(texts, columns, "selected") or None,
            correct_answer_raw=correct if include_correct_answer else None,
            time_spent_sec=_leading_int(_column(texts, columns, "time")) or 0,
        ))
    logger.debug("Decoded %d answer rows (columns=%s)", len(answers), columns)
    return answers


def build_report(listing: TestListing, questionwise: Any = None, answer_html: Optional[str] = None,
                 include_questions: bool = True) -> Tuple[RawExamReport, List[str]]:
    """Assemble one RawExamReport from the pages an adapter fetched for a listing."""
    decoded = decode_questionwise_payload(questionwise) if questionwise is not None else QuestionwiseResult()
    answers = decoded.answers
    if answer_html:
        answers = decode_answer_table(answer_html) or answers
    report = RawExamReport(
        external_exam_id=listing.report_id or None,
        title=listing.title,
        exam_date=decode_exam_date(questionwise) or listing.exam_date,
        questions=decoded.questions if include_questions else [],
        answers=answers,
    )
    return report, decoded.warnings
