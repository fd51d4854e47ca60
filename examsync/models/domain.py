"""
Plain domain types shared by the pure services (normalizer, grading).

ORM rows expose the same attribute names as QuestionRecord, so grading works on
either.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

NumericRange = Dict[str, float]            # {"min": a, "max": b}
BonusKey = Dict[str, bool]                 # {"bonus": True}
AnswerValue = Union[None, str, List[str], int, float, NumericRange, BonusKey]


class Subject(str, enum.Enum):
    PHYSICS = "PHYSICS"
    CHEMISTRY = "CHEMISTRY"
    MATHEMATICS = "MATHEMATICS"
    UNKNOWN = "UNKNOWN"


class QuestionType(str, enum.Enum):
    MCQ = "MCQ"
    MAQ = "MAQ"
    VMAQ = "VMAQ"
    NAT = "NAT"


class QuestionStatus(str, enum.Enum):
    CORRECT = "Correct"
    PARTIAL = "Partial"
    INCORRECT = "Incorrect"
    UNATTEMPTED = "Unattempted"


class SyncStatus(str, enum.Enum):
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Marking:
    correct: int
    incorrect: int
    unattempted: int


@dataclass
class QuestionRecord:
    id: str
    question_number: int
    subject: str
    qtype: str
    correct_answer: AnswerValue = None
    key_update: AnswerValue = None
    correct_marking: int = 4
    incorrect_marking: int = -1
    unattempted_marking: int = 0
    has_partial: bool = False
    question_content: str = ""
    option_content_a: Optional[str] = None
    option_content_b: Optional[str] = None
    option_content_c: Optional[str] = None
    option_content_d: Optional[str] = None
    last_key_update_time: Optional[datetime] = None


@dataclass
class TestRecord:
    """One user's attempt joined with its exam's questions, ready for grading."""
    __test__ = False
    id: str
    user_id: str
    exam_id: str
    title: str
    exam_date: str
    questions: List[QuestionRecord] = field(default_factory=list)
    answers: Dict[str, Any] = field(default_factory=dict)
    timings: Dict[str, Any] = field(default_factory=dict)
    bookmarks: Dict[str, bool] = field(default_factory=dict)
