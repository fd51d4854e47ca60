from datetime import datetime
import pytest
from examsync.models.domain import QuestionRecord, QuestionStatus, TestRecord
from examsync.services.answer_keys import NumericRange, parse_key
from examsync.services.grading import (
    build_analysis, build_display_questions, compute_partial_score, format_answer_value, get_percentile,
    get_question_mark, get_question_status, matches_key,
)


def maq(key=("A", "B", "C")):
    return QuestionRecord(id="q-maq", question_number=1, subject="CHEMISTRY", qtype="MAQ", correct_answer=list(key),
                          key_update=list(key), correct_marking=4, incorrect_marking=-2, unattempted_marking=0, has_partial=True)


def nat(key="9-11"):
    return QuestionRecord(id="q-nat", question_number=2, subject="MATHEMATICS", qtype="NAT", correct_answer=key,
                          key_update=key, correct_marking=4, incorrect_marking=-1, unattempted_marking=0)


def mcq(key="B", number=3, subject="PHYSICS", qid="q-mcq"):
    return QuestionRecord(id=qid, question_number=number, subject=subject, qtype="MCQ", correct_answer=key,
                          key_update=key, correct_marking=4, incorrect_marking=-1, unattempted_marking=0)


def attempt(questions, answers, timings=None):
    return TestRecord(id="t1", user_id="u1", exam_id="e1", title="Mock", exam_date="2024-03-05",
                      questions=questions, answers=answers, timings=timings or {})


@pytest.mark.parametrize("selected,mark,status", [
    (["A", "B"], 2, QuestionStatus.PARTIAL),
    (["A", "D"], -2, QuestionStatus.INCORRECT),
    (["A", "B", "C"], 4, QuestionStatus.CORRECT),
    (["C", "B", "A"], 4, QuestionStatus.CORRECT),
    ([], 0, QuestionStatus.UNATTEMPTED),
    (None, 0, QuestionStatus.UNATTEMPTED),
])
def test_maq_partial_credit(selected, mark, status):
    q = maq()
    t = attempt([q], {q.id: selected})
    assert get_question_mark(t, q) == mark
    assert get_question_status(t, q) == status


@pytest.mark.parametrize("selected,status", [
    (10, QuestionStatus.CORRECT),
    (9, QuestionStatus.CORRECT),
    (8.99, QuestionStatus.INCORRECT),
    (None, QuestionStatus.UNATTEMPTED),
])
def test_nat_range(selected, status):
    q = nat()
    assert get_question_status(attempt([q], {q.id: selected}), q) == status


def test_nat_or_alternatives_and_stored_range():
    q = nat("5 OR 7 | 10 to 12")
    assert get_question_status(attempt([q], {q.id: 7}), q) == QuestionStatus.CORRECT
    assert get_question_status(attempt([q], {q.id: 11.5}), q) == QuestionStatus.CORRECT
    assert get_question_status(attempt([q], {q.id: 6}), q) == QuestionStatus.INCORRECT
    q = nat({"min": 2.5, "max": 3.5})
    assert get_question_mark(attempt([q], {q.id: 3}), q) == 4
    assert get_question_mark(attempt([q], {q.id: 4}), q) == -1


def test_bonus_key_always_correct():
    for q in (maq(), nat(), mcq()):
        q.key_update = {"bonus": True}
        for selected in (None, [], "Z", 999):
            t = attempt([q], {q.id: selected})
            assert get_question_status(t, q) == QuestionStatus.CORRECT
            assert get_question_mark(t, q) == q.correct_marking


def test_mcq_alternatives():
    q = mcq("A OR C")
    assert get_question_status(attempt([q], {q.id: "C"}), q) == QuestionStatus.CORRECT
    assert get_question_status(attempt([q], {q.id: "B"}), q) == QuestionStatus.INCORRECT
    assert matches_key("D", "B|D", "VMAQ")
    assert not matches_key("A", "", "MCQ")


def test_maq_alternative_groups():
    q = maq()
    q.key_update = "A,B OR C,D"
    t = attempt([q], {q.id: ["C", "D"]})
    assert get_question_status(t, q) == QuestionStatus.CORRECT
    assert compute_partial_score(q, ["A"], q.key_update) == 1
    assert compute_partial_score(q, ["A"], "") == -2
    assert compute_partial_score(q, [], q.key_update) == 0


def test_status_is_pure():
    q = maq()
    t = attempt([q], {q.id: ["A", "B"]})
    assert {get_question_status(t, q) for _ in range(5)} == {QuestionStatus.PARTIAL}
    assert t.answers == {q.id: ["A", "B"]}


def test_parse_key_structure():
    key = parse_key("9-11 OR 15", "NAT")
    assert key.numeric_alternatives[0] == NumericRange(9, 11)
    assert len(key.numeric_alternatives) == 2
    assert parse_key(["a", "c"], "MAQ").option_groups == (frozenset({"A", "C"}),)
    assert parse_key({"bonus": True}, "MCQ").bonus


def test_end_to_end_analysis():
    q1 = mcq("B", number=1)
    q2 = maq(("A", "C"))
    q2.question_number = 2
    q3 = nat(5)
    q3.question_number = 3
    t = attempt([q3, q1, q2], {q1.id: "B", q2.id: ["A"], q3.id: None}, {q1.id: 40, q2.id: 95, q3.id: 0})
    a = build_analysis(t)
    assert (a.correct, a.partial, a.unattempted, a.incorrect) == (1, 1, 1, 0)
    assert a.attempted == 2
    assert a.accuracy == 50.0
    assert a.score_current == 5
    assert a.score_delta == 0
    assert a.key_changes == []
    assert a.avg_attempted_time == 67.5
    assert [b.label for b in a.time_buckets if b.count] == ["31-60s", "1-2m"]
    assert a.longest_success == 2
    assert a.longest_miss == 1
    assert {s.name for s in a.per_section} == {"PHYSICS", "CHEMISTRY", "MATHEMATICS"}
    assert next(s for s in a.per_type if s.name == "MAQ").partial == 1


def test_analysis_key_changes_and_score_delta():
    q1 = mcq("B", number=1)
    q2 = mcq("C", number=2, qid="q-2")
    q2.key_update = "D"
    q2.last_key_update_time = datetime(2024, 3, 6, 12, 0)
    t = attempt([q1, q2], {q1.id: "B", q2.id: "D"}, {q1.id: 10, q2.id: 200})
    a = build_analysis(t)
    assert [c.id for c in a.key_changes] == ["q-2"]
    assert a.key_changes[0].original == "C"
    assert a.latest_key_update == datetime(2024, 3, 6, 12, 0)
    assert (a.score_original, a.score_current, a.score_delta) == (3, 8, 5)


def test_latest_key_update_ignores_reverted_keys():
    reverted = mcq("B", number=1)
    reverted.last_key_update_time = datetime(2024, 3, 9, 8, 0)
    changed = mcq("C", number=2, qid="q-2")
    changed.key_update = "D"
    changed.last_key_update_time = datetime(2024, 3, 6, 12, 0)
    a = build_analysis(attempt([reverted, changed], {}))
    assert a.latest_key_update == datetime(2024, 3, 6, 12, 0)
    assert build_analysis(attempt([reverted], {})).latest_key_update is None


def test_fast_and_slow_wrong():
    questions = [mcq("A", number=i, qid=f"q{i}") for i in range(1, 5)]
    answers = {"q1": "B", "q2": "B", "q3": "A", "q4": "A"}
    timings = {"q1": 10, "q2": 200, "q3": 100, "q4": 90}
    a = build_analysis(attempt(questions, answers, timings))
    assert a.fast_wrong == 1
    assert a.slow_wrong == 1
    assert [s.id for s in a.fastest_incorrect] == ["q1", "q2"]
    assert a.slowest_questions[0].id == "q2"
    assert (a.time_min, a.time_max) == (10, 200)


def test_percentile_nearest_rank():
    assert get_percentile([], 50) == 0
    assert get_percentile([5, 1, 3, 2], 50) == 2
    assert get_percentile([5, 1, 3, 2], 75) == 3


def test_format_answer_value():
    assert format_answer_value(None) == "-"
    assert format_answer_value({"bonus": True}) == "Bonus"
    assert format_answer_value(["A", "C"]) == "A,C"
    assert format_answer_value([]) == "-"
    assert format_answer_value({"min": 9, "max": 11}) == "9-11"
    assert format_answer_value(4) == "4"


def test_display_order():
    questions = [mcq(number=1, subject="MATHEMATICS", qid="m1"), mcq(number=2, subject="UNKNOWN", qid="u1"),
                 mcq(number=3, subject="PHYSICS", qid="p1"), mcq(number=4, subject="CHEMISTRY", qid="c1")]
    ordered = build_display_questions(questions)
    assert [item["question"].id for item in ordered] == ["p1", "c1", "m1", "u1"]
    assert [item["display_number"] for item in ordered] == [1, 2, 3, 4]
