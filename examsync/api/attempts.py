from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, constr
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from examsync.core.auth import TokenData, require_roles
from examsync.core.database import get_db
from examsync.core.exceptions import InvalidKeyError, InvalidMarkingSchemeError
from examsync.models.orm import Attempt, Question
from examsync.services.attempts import build_test_record, list_attempts, set_bookmark
from examsync.services.grading import build_analysis, build_display_questions, format_answer_value, get_question_status
from examsync.services.key_updates import update_answer_key, update_marking_scheme
from examsync.services.peer_timings import fetch_peer_timings

router = APIRouter()

class AttemptSummary(BaseModel):
    id: str; exam_id: str; title: str; exam_date: str
    total: int; attempted: int; correct: int; partial: int; accuracy: float
    score_current: float; score_original: float; key_changes: int

class AnswerKeyUpdate(BaseModel):
    question_id: constr(min_length=1)
    new_key: Any = None

class MarkingSchemeUpdate(BaseModel):
    scheme: Dict[str, Dict[str, Any]]

class BookmarkUpdate(BaseModel):
    question_id: constr(min_length=1)
    bookmarked: bool = True

def _load_attempt(db: Session, attempt_id: str, user: TokenData) -> Attempt:
    attempt = db.get(Attempt, attempt_id)
    if attempt is None or (attempt.user_id != user.sub and "admin" not in user.roles):
        raise HTTPException(404, "Test not found.")
    return attempt

def _detail(db: Session, attempt: Attempt) -> dict:
    record = build_test_record(db, attempt)
    display = build_display_questions(record.questions)
    return {
        "test": asdict(record),
        "analysis": asdict(build_analysis(record)),
        "questions": [{
            "display_number": item["display_number"],
            "id": item["question"].id,
            "question_number": item["question"].question_number,
            "status": get_question_status(record, item["question"]),
            "selected": format_answer_value(record.answers.get(item["question"].id)),
            "key": format_answer_value(item["question"].key_update),
            "original_key": format_answer_value(item["question"].correct_answer),
        } for item in display],
    }

@router.get("", response_model=List[AttemptSummary])
def get_attempts(user: TokenData = Depends(require_roles("user", "admin")), db: Session = Depends(get_db)):
    out = []
    for attempt in list_attempts(db, user.sub):
        record = build_test_record(db, attempt)
        a = build_analysis(record)
        out.append(AttemptSummary(id=attempt.id, exam_id=attempt.exam_id, title=record.title, exam_date=record.exam_date,
                                  total=a.total, attempted=a.attempted, correct=a.correct, partial=a.partial, accuracy=a.accuracy,
                                  score_current=a.score_current, score_original=a.score_original, key_changes=len(a.key_changes)))
    return out

@router.get("/{attempt_id}")
def get_attempt(attempt_id: str, user: TokenData = Depends(require_roles("user", "admin")), db: Session = Depends(get_db)):
    return _detail(db, _load_attempt(db, attempt_id, user))

@router.get("/{attempt_id}/peer-timings")
def peer_timings(attempt_id: str, user: TokenData = Depends(require_roles("user", "admin")), db: Session = Depends(get_db)):
    attempt = _load_attempt(db, attempt_id, user)
    return {"timings": fetch_peer_timings(db, attempt.exam_id, attempt.user_id)}

@router.post("/{attempt_id}/bookmarks")
def bookmark(attempt_id: str, payload: BookmarkUpdate, user: TokenData = Depends(require_roles("user", "admin")), db: Session = Depends(get_db)):
    attempt = _load_attempt(db, attempt_id, user)
    if payload.question_id not in (attempt.answers or {}):
        raise HTTPException(404, "Question not found.")
    return {"bookmarks": set_bookmark(db, attempt, payload.question_id, payload.bookmarked)}

@router.post("/{attempt_id}/answer-key")
def revise_answer_key(attempt_id: str, payload: AnswerKeyUpdate, user: TokenData = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    attempt = _load_attempt(db, attempt_id, user)
    question = db.scalar(select(Question).where(Question.id == payload.question_id, Question.exam_id == attempt.exam_id))
    if question is None:
        raise HTTPException(404, "Question not found.")
    try:
        changed = update_answer_key(db, question, payload.new_key)
    except InvalidKeyError as e:
        raise HTTPException(400, str(e))
    return {"changed": changed, **_detail(db, attempt)}

@router.post("/{attempt_id}/marking-scheme")
def revise_marking_scheme(attempt_id: str, payload: MarkingSchemeUpdate, user: TokenData = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    attempt = _load_attempt(db, attempt_id, user)
    try:
        updated = update_marking_scheme(db, attempt.exam_id, payload.scheme)
    except InvalidMarkingSchemeError as e:
        raise HTTPException(400, str(e))
    return {"updated": sorted(updated), **_detail(db, attempt)}
