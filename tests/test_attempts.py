from sqlalchemy import func, select
from examsync.models.orm import Attempt
from examsync.services.attempts import build_answer_maps, build_test_record, set_bookmark, unresolved_answers, upsert_attempt
from examsync.services.catalog import QuestionRef, load_question_map, upsert_exam
from examsync.services.grading import build_analysis
from examsync.services.normalizer import ScrapedAnswer, normalize_report
from tests.conftest import make_report


def seed(session_factory, report=None):
    parsed = normalize_report(report or make_report())
    with session_factory() as db:
        with db.begin():
            merge = upsert_exam(db, parsed)
    return parsed, merge


def test_answer_maps_cover_every_known_question():
    primary = {1: QuestionRef("q1", "MCQ"), 2: QuestionRef("q2", "MAQ")}
    fallback = {3: QuestionRef("q3", "NAT")}
    answers = [ScrapedAnswer(1, "B", None, 30), ScrapedAnswer(2, "C,A", None, 20), ScrapedAnswer(3, "2.5 TO 3", None, 5),
               ScrapedAnswer(9, "A", None, 5), ScrapedAnswer(None, "A", None, 5)]
    values, timings = build_answer_maps(primary, answers, fallback)
    assert values == {"q1": "B", "q2": ["A", "C"], "q3": {"min": 2.5, "max": 3}}
    assert timings == {"q1": 30, "q2": 20, "q3": 5}
    values, timings = build_answer_maps(primary, [])
    assert values == {"q1": None, "q2": None}
    assert timings == {"q1": 0, "q2": 0}


def test_upsert_attempt_overwrites_and_keeps_bookmarks(session_factory):
    parsed, merge = seed(session_factory)
    with session_factory() as db:
        with db.begin():
            attempt = upsert_attempt(db, "u1", merge.exam_id, merge.by_source_number, parsed.answers, merge.by_question_number)
            attempt_id = attempt.id
            q1 = merge.by_question_number[1].id
            assert attempt.answers[q1] == "B"
            assert attempt.answers[merge.by_question_number[2].id] == ["A"]
            assert attempt.answers[merge.by_question_number[3].id] is None
            assert attempt.timings[merge.by_question_number[2].id] == 95
        set_bookmark(db, db.get(Attempt, attempt_id), q1, True)

    resynced = normalize_report(make_report(answers={1: ("C", 12), 2: ("A,C", 80), 3: ("5", 30)}))
    with session_factory() as db:
        with db.begin():
            again = upsert_attempt(db, "u1", merge.exam_id, merge.by_source_number, resynced.answers)
            assert again.id == attempt_id
        stored = db.get(Attempt, attempt_id)
        assert stored.answers[q1] == "C"
        assert stored.answers[merge.by_question_number[3].id] == 5
        assert stored.timings[q1] == 12
        assert stored.bookmarks == {q1: True}
        assert db.scalar(select(func.count()).select_from(Attempt)) == 1


def test_answers_resolve_against_persisted_catalog(session_factory):
    parsed, merge = seed(session_factory)
    with session_factory() as db:
        with db.begin():
            catalog = load_question_map(db, merge.exam_id)
            attempt = upsert_attempt(db, "u2", merge.exam_id, {}, parsed.answers, catalog)
            assert attempt.answers[catalog[1].id] == "B"


def test_build_test_record_feeds_grading(session_factory):
    parsed, merge = seed(session_factory)
    with session_factory() as db:
        with db.begin():
            attempt = upsert_attempt(db, "u1", merge.exam_id, merge.by_source_number, parsed.answers)
        record = build_test_record(db, attempt)
    assert record.title == "Mock Test 1"
    assert [q.question_number for q in record.questions] == [1, 2, 3]
    analysis = build_analysis(record)
    assert (analysis.correct, analysis.partial, analysis.unattempted) == (1, 1, 1)
    assert analysis.accuracy == 50.0


def test_unbookmark(session_factory):
    parsed, merge = seed(session_factory)
    with session_factory() as db:
        with db.begin():
            attempt = upsert_attempt(db, "u1", merge.exam_id, merge.by_source_number, parsed.answers)
        qid = merge.by_question_number[2].id
        set_bookmark(db, attempt, qid, True)
        assert set_bookmark(db, attempt, qid, False) == {}


def test_unresolved_answers_lists_orphans():
    primary = {1: QuestionRef("q1", "MCQ")}
    orphan, missing = ScrapedAnswer(7, "A", None, 5), ScrapedAnswer(None, "B", None, 5)
    answers = [ScrapedAnswer(1, "B", None, 30), orphan, missing, ScrapedAnswer(2, "A", None, 5)]
    assert unresolved_answers(primary, answers, {2: QuestionRef("q2", "MCQ")}) == [orphan, missing]
