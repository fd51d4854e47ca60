import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from examsync.extraction.types import RawAnswer, RawExamReport, RawQuestion
from examsync.core.database import init_db


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'examsync.db'}", future=True, connect_args={"check_same_thread": False})

    # let SQLAlchemy own BEGIN so SAVEPOINTs nest inside the outer transaction
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def make_report(external_exam_id="abc123", title="Mock Test 1", exam_date="2024-03-05", keys=None, answers=None):
    """Three-question report: Q1 MCQ, Q2 MAQ, Q3 NAT, with optional key/answer overrides."""
    keys = keys or {1: "B", 2: "AC", 3: "5"}
    questions = [
        RawQuestion(source_number=1, subject_label="Physics", type_hint="Single Correct", question_content="Q1",
                    option_a="a", option_b="b", option_c="c", option_d="d", correct_answer_raw=keys.get(1)),
        RawQuestion(source_number=2, subject_label="Chemistry", type_hint="Multiple Correct", question_content="Q2",
                    option_a="a", option_b="b", option_c="c", option_d="d", correct_answer_raw=keys.get(2)),
        RawQuestion(source_number=3, subject_label="Mathematics", type_hint="Numerical", question_content="Q3",
                    correct_answer_raw=keys.get(3)),
    ]
    if answers is None:
        answers = {1: ("B", 40), 2: ("A", 95), 3: (None, 0)}
    raw_answers = [RawAnswer(source_number=n, selected_answer_raw=sel, correct_answer_raw=keys.get(n), time_spent_sec=t)
                   for n, (sel, t) in answers.items()]
    return RawExamReport(external_exam_id=external_exam_id, title=title, exam_date=exam_date,
                         questions=questions, answers=raw_answers)


@pytest.fixture
def report_factory():
    return make_report
