import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, ForeignKey, JSON, DateTime, Float, UniqueConstraint, Index
from sqlalchemy.types import TypeDecorator

def _uuid() -> str: return str(uuid4())
def _now() -> datetime: return datetime.now(timezone.utc)

class AnswerValueText(TypeDecorator):
    """AnswerValue stored as JSON text; SQL NULL and the JSON literals are distinct."""
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect):
        if value is None:
            return None
        return json.dumps(value, sort_keys=True)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return json.loads(value)
        except ValueError:
            return value

# serialized forms of keys that count as "no key known yet": NULL and the
# ensure_answer_value placeholders ("" for MCQ/VMAQ, [] for MAQ, 0 for NAT)
UNSET_ANSWER_TEXTS = ("null", '""', "[]", "0")

class Base(DeclarativeBase): pass

class Exam(Base):
    __tablename__ = "exams"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    external_exam_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(512))
    exam_date: Mapped[str] = mapped_column(String(10))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)
    questions: Mapped[list["Question"]] = relationship(back_populates="exam", order_by="Question.question_number")

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint("exam_id", "question_number", name="uq_question_exam_number"),
        Index("idx_question_exam", "exam_id"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id", ondelete="CASCADE"))
    question_number: Mapped[int] = mapped_column(Integer)
    subject: Mapped[str] = mapped_column(String(16))
    qtype: Mapped[str] = mapped_column(String(8))
    question_content: Mapped[str] = mapped_column(Text, default="")
    option_content_a: Mapped[str | None] = mapped_column(Text, nullable=True)
    option_content_b: Mapped[str | None] = mapped_column(Text, nullable=True)
    option_content_c: Mapped[str | None] = mapped_column(Text, nullable=True)
    option_content_d: Mapped[str | None] = mapped_column(Text, nullable=True)
    has_partial: Mapped[bool] = mapped_column(Boolean, default=False)
    correct_marking: Mapped[float] = mapped_column(Float, default=4)
    incorrect_marking: Mapped[float] = mapped_column(Float, default=-1)
    unattempted_marking: Mapped[float] = mapped_column(Float, default=0)
    correct_answer: Mapped[Any] = mapped_column(AnswerValueText, nullable=True)
    key_update: Mapped[Any] = mapped_column(AnswerValueText, nullable=True)
    last_key_update_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exam: Mapped[Exam] = relationship(back_populates="questions")

class Attempt(Base):
    __tablename__ = "attempts"
    __table_args__ = (
        UniqueConstraint("user_id", "exam_id", name="uq_attempt_user_exam"),
        Index("idx_attempt_exam", "exam_id"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id", ondelete="CASCADE"))
    answers: Mapped[dict] = mapped_column(JSON, default=dict)
    timings: Mapped[dict] = mapped_column(JSON, default=dict)
    bookmarks: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)
    exam: Mapped[Exam] = relationship()

class ExternalAccount(Base):
    __tablename__ = "external_accounts"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_external_account_user_provider"),)
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    provider: Mapped[str] = mapped_column(String(64))
    username: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(16), default="CONNECTED")
    status_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_status: Mapped[str] = mapped_column(String(16), default="IDLE")
    sync_total: Mapped[int] = mapped_column(Integer, default=0)
    sync_completed: Mapped[int] = mapped_column(Integer, default=0)
    sync_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
