"""Data handed over by extraction adapters, before normalization."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set


@dataclass
class RawQuestion:
    source_number: Any
    subject_label: Optional[str] = None
    type_hint: Optional[str] = None
    question_content: str = ""
    option_a: Optional[str] = None
    option_b: Optional[str] = None
    option_c: Optional[str] = None
    option_d: Optional[str] = None
    correct_answer_raw: Optional[str] = None
    source_id: Optional[str] = None

    @property
    def options(self) -> List[Optional[str]]:
        return [self.option_a, self.option_b, self.option_c, self.option_d]

    @property
    def has_options(self) -> bool:
        return any(opt and opt.strip() for opt in self.options)


@dataclass
class RawAnswer:
    source_number: Any
    selected_answer_raw: Optional[str] = None
    correct_answer_raw: Optional[str] = None
    time_spent_sec: Any = 0


@dataclass
class RawExamReport:
    external_exam_id: Optional[str]
    title: str
    exam_date: Any = None
    questions: List[RawQuestion] = field(default_factory=list)
    answers: List[RawAnswer] = field(default_factory=list)


@dataclass
class SyncPlan:
    """What the adapter should fetch for one sync run."""
    existing_exam_ids: Set[str] = field(default_factory=set)
    force_full_exam_ids: Set[str] = field(default_factory=set)
    skip_exam_ids: Set[str] = field(default_factory=set)
    only_exam_ids: Optional[Set[str]] = None
    attempts_only: bool = False

    def wants(self, external_exam_id: str) -> bool:
        if self.only_exam_ids is not None and external_exam_id not in self.only_exam_ids:
            return False
        return external_exam_id not in self.skip_exam_ids

    def needs_questions(self, external_exam_id: str) -> bool:
        if self.attempts_only:
            return False
        return external_exam_id not in self.existing_exam_ids or external_exam_id in self.force_full_exam_ids


@dataclass
class ScrapeProgress:
    total: int
    completed: int
    current_title: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "completed": self.completed, "current_title": self.current_title}


@dataclass
class ScrapeResult:
    reports: List[RawExamReport] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
