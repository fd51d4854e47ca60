"""Admin revisions of the active answer key and of per-type marking schemes."""
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Mapping
from sqlalchemy import update
from sqlalchemy.orm import Session
from examsync.core.exceptions import InvalidKeyError, InvalidMarkingSchemeError
from examsync.models.domain import Marking, QuestionType
from examsync.models.orm import Question

logger = logging.getLogger(__name__)


def normalize_key_input(new_key: Any) -> Any:
    # numbers are kept as text so a revised key of 0 never reads as the NAT placeholder
    if isinstance(new_key, (int, float)) and not isinstance(new_key, bool):
        new_key = str(new_key)
    if isinstance(new_key, str):
        new_key = new_key.strip().upper()
    if new_key is None or new_key == "":
        raise InvalidKeyError("newKey is required")
    return new_key


def update_answer_key(session: Session, question: Question, new_key: Any) -> bool:
    """Set the active key; returns False when it already equals the new key.

    correct_answer is left alone so the original key stays available for
    score comparisons.
    """
    key = normalize_key_input(new_key)
    if json.dumps(question.key_update, sort_keys=True) == json.dumps(key, sort_keys=True):
        return False
    question.key_update = key
    question.last_key_update_time = datetime.now(timezone.utc)
    session.commit()
    logger.info(f"Answer key for question {question.id} revised to {key!r}")
    return True


def _finite_number(value: Any):
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return value
    return None


def parse_marking_scheme(scheme: Any) -> Dict[str, Marking]:
    """Valid {qtype: {correct, incorrect, unattempted}} entries; others are dropped."""
    entries: Dict[str, Marking] = {}
    if not isinstance(scheme, Mapping):
        return entries
    for qtype, payload in scheme.items():
        if not isinstance(payload, Mapping) or qtype not in QuestionType.__members__:
            continue
        values = [_finite_number(payload.get(name)) for name in ("correct", "incorrect", "unattempted")]
        if any(v is None for v in values):
            continue
        entries[qtype] = Marking(*values)
    return entries


def update_marking_scheme(session: Session, exam_id: str, scheme: Any) -> Dict[str, Marking]:
    updates = parse_marking_scheme(scheme)
    if not updates:
        raise InvalidMarkingSchemeError("scheme is required")
    try:
        for qtype, marking in updates.items():
            session.execute(
                update(Question).where(Question.exam_id == exam_id, Question.qtype == qtype)
                .values(correct_marking=marking.correct, incorrect_marking=marking.incorrect,
                        unattempted_marking=marking.unattempted),
                execution_options={"synchronize_session": False},
            )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.expire_all()
    return updates
