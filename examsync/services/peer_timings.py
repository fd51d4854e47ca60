import math
from typing import Any, Dict, Iterable, Mapping
from sqlalchemy import select
from sqlalchemy.orm import Session
from examsync.models.orm import Attempt, Question


def _seconds(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value) if math.isfinite(value) else 0.0


def average_peer_timings(question_ids: Iterable[str], timings_list: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Mean seconds per question; missing or non-finite timings count as zero."""
    timings_list = list(timings_list)
    if not timings_list:
        return {}
    count = len(timings_list)
    return {qid: sum(_seconds((timings or {}).get(qid)) for timings in timings_list) / count for qid in question_ids}


def fetch_peer_timings(session: Session, exam_id: str, exclude_user_id: str) -> Dict[str, float]:
    question_ids = session.scalars(select(Question.id).where(Question.exam_id == exam_id).order_by(Question.question_number)).all()
    timings = session.scalars(select(Attempt.timings).where(Attempt.exam_id == exam_id, Attempt.user_id != exclude_user_id)).all()
    return average_peer_timings(question_ids, timings)
