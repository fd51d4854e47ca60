from datetime import datetime, timezone
import pytest
from examsync.extraction.types import RawAnswer, RawExamReport, RawQuestion
from examsync.models.domain import QuestionType, Subject
from examsync.services.normalizer import (
    coerce_source_number, ensure_answer_value, get_marking_for_type, infer_question_type, normalize_answer,
    normalize_date, normalize_report, normalize_subject, parse_answer_value,
)


@pytest.mark.parametrize("raw,expected", [
    ("BAB", "A,B"),
    ("Your Answer: -", None),
    ("ans: c", "C"),
    ("Correct Answer: A, C", "A,C"),
    ("YOUR ANSWER : ANS: (D)", "D"),
    ("  not   attempted ", None),
    ("N/A", None),
    ("", None),
    (None, None),
    ("12.5", "12.5"),
    ("Ans -3", "-3"),
    ("2.5 to 3.5", "2.5 TO 3.5"),
])
def test_normalize_answer(raw, expected):
    assert normalize_answer(raw) == expected


def test_parse_answer_value_numeric():
    assert parse_answer_value("2.5 to 3.5", "NAT") == {"min": 2.5, "max": 3.5}
    assert parse_answer_value("4", "NAT") == 4
    assert parse_answer_value("abc", "NAT") is None
    assert parse_answer_value("−3", QuestionType.NAT) == -3
    assert parse_answer_value("7 - 7", "NAT") == 7
    assert parse_answer_value("11-9", "NAT") == {"min": 9, "max": 11}
    assert parse_answer_value("approx 12 units", "NAT") == 12


def test_parse_answer_value_options():
    assert parse_answer_value("AC", "MAQ") == ["A", "C"]
    assert parse_answer_value("C,A,A", "MAQ") == ["A", "C"]
    assert parse_answer_value("B,C", "MCQ") == "B"
    assert parse_answer_value("d", "VMAQ") == "D"
    assert parse_answer_value(None, "MAQ") is None
    assert parse_answer_value(" , ", "MCQ") is None


@pytest.mark.parametrize("meta,has_options,key,expected", [
    ("VMAQ", True, "A", QuestionType.VMAQ),
    ("Multiple Correct", True, "A", QuestionType.MAQ),
    ("MSQ", True, None, QuestionType.MAQ),
    ("Integer Type", True, "A", QuestionType.NAT),
    ("Single Correct", True, "A,B", QuestionType.MCQ),
    (None, False, "B", QuestionType.NAT),
    (None, True, "A,C", QuestionType.MAQ),
    (None, True, "12", QuestionType.NAT),
    (None, True, "3 to 4", QuestionType.NAT),
    (None, True, "B", QuestionType.MCQ),
])
def test_infer_question_type(meta, has_options, key, expected):
    assert infer_question_type(meta, has_options, key) == expected


def test_marking_table():
    assert get_marking_for_type("VMAQ") == get_marking_for_type(QuestionType.VMAQ)
    assert (get_marking_for_type("VMAQ").correct, get_marking_for_type("VMAQ").incorrect) == (3, -1)
    assert get_marking_for_type("MAQ").incorrect == -2
    assert get_marking_for_type("NAT").correct == 4
    assert get_marking_for_type("bogus") == get_marking_for_type("MCQ")


def test_ensure_answer_value_placeholders():
    assert ensure_answer_value(None, "MAQ") == []
    assert ensure_answer_value(None, "NAT") == 0
    assert ensure_answer_value(None, "MCQ") == ""
    assert ensure_answer_value("B", "MCQ") == "B"


def test_normalize_subject():
    assert normalize_subject("Physics") is Subject.PHYSICS
    assert normalize_subject(" chemistry ") is Subject.CHEMISTRY
    assert normalize_subject("MATHS") is Subject.MATHEMATICS
    assert normalize_subject("Biology") is None
    assert normalize_subject(None) is None


def test_normalize_date():
    today = datetime.now(timezone.utc).date().isoformat()
    assert normalize_date("2024-03-05") == "2024-03-05"
    assert normalize_date("2024-03-05T10:00:00Z") == "2024-03-05"
    assert normalize_date(1709600000) == "2024-03-05"
    assert normalize_date(1709600000000) == "2024-03-05"
    assert normalize_date("05/03/2024") == "2024-03-05"
    assert normalize_date("not a date") == today
    assert normalize_date(None) == today


def test_coerce_source_number():
    assert coerce_source_number("7") == 7
    assert coerce_source_number(3.0) == 3
    assert coerce_source_number(0) is None
    assert coerce_source_number(2.5) is None
    assert coerce_source_number("x") is None


def test_normalize_report_keeps_unknown_subject_with_warning():
    report = RawExamReport(
        external_exam_id=" ext-1 ", title=" Mock ", exam_date="2024-01-02",
        questions=[
            RawQuestion(source_number=1, subject_label="Biology", option_a="a", option_b="b", correct_answer_raw="A"),
            RawQuestion(source_number=2, subject_label="Physics", type_hint="NAT", option_a="x", correct_answer_raw="5"),
        ],
        answers=[RawAnswer(source_number="2", selected_answer_raw="Your Answer: 5", time_spent_sec="41.6")],
    )
    parsed = normalize_report(report)
    assert parsed.external_exam_id == "ext-1"
    assert parsed.title == "Mock"
    assert parsed.questions[0].subject is Subject.UNKNOWN
    assert parsed.warnings == ["Unknown subject for question 1."]
    nat = parsed.questions[1]
    assert nat.qtype is QuestionType.NAT
    assert nat.options == [None, None, None, None]
    assert nat.has_partial is False
    assert parsed.answers[0].source_number == 2
    assert parsed.answers[0].selected_answer == "5"
    assert parsed.answers[0].time_spent_sec == 42


def test_normalize_report_missing_id():
    parsed = normalize_report(RawExamReport(external_exam_id="  ", title=""))
    assert parsed.external_exam_id is None
    assert parsed.title == "Untitled exam"
