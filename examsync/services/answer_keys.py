"""
Answer keys parsed into explicit alternatives.

A stored key may be a plain option token, an option list, a number, a numeric
range, a bonus marker, or an admin-typed string such as "A OR C" or "9-11 | 12".
parse_key turns any of these into an AnswerKey once; matching and partial
scoring then work on the parsed structure.
"""
import math
import re
from dataclasses import dataclass
from typing import Any, FrozenSet, Optional, Tuple, Union
from examsync.models.domain import QuestionType
from examsync.services.normalizer import MINUS_VARIANTS, RANGE_RE

OR_SPLIT_RE = re.compile(r"\s+OR\s+|\s*\|\s*", re.IGNORECASE)


@dataclass(frozen=True)
class OptionGroup:
    options: FrozenSet[str]


@dataclass(frozen=True)
class NumericExact:
    value: float

    def contains(self, number: float) -> bool:
        return math.isclose(number, self.value, rel_tol=0.0, abs_tol=1e-9)


@dataclass(frozen=True)
class NumericRange:
    low: float
    high: float

    def contains(self, number: float) -> bool:
        return self.low <= number <= self.high


Alternative = Union[OptionGroup, NumericExact, NumericRange]


@dataclass(frozen=True)
class AnswerKey:
    alternatives: Tuple[Alternative, ...] = ()
    bonus: bool = False

    @property
    def option_groups(self) -> Tuple[FrozenSet[str], ...]:
        return tuple(alt.options for alt in self.alternatives if isinstance(alt, OptionGroup))

    @property
    def numeric_alternatives(self) -> Tuple[Union[NumericExact, NumericRange], ...]:
        return tuple(alt for alt in self.alternatives if isinstance(alt, (NumericExact, NumericRange)))


def is_bonus_key(value: Any) -> bool:
    return isinstance(value, dict) and value.get("bonus") is True


def split_alternatives(text: str):
    return [part.strip() for part in OR_SPLIT_RE.split(text) if part.strip()]


def to_option_set(value: Any) -> FrozenSet[str]:
    if value is None or isinstance(value, (bool, dict)):
        return frozenset()
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(item).strip().upper() for item in value if str(item).strip())
    text = str(value).strip().upper()
    if not text:
        return frozenset()
    if "," in text:
        return frozenset(part.strip() for part in text.split(",") if part.strip())
    if re.fullmatch(r"[A-Z]+", text):
        return frozenset(text)
    return frozenset([text])


def to_number(value: Any) -> Optional[float]:
    """A single finite number, or None (ranges and free text are not numbers)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.translate(MINUS_VARIANTS).strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def to_numeric_alternative(value: Any) -> Optional[Union[NumericExact, NumericRange]]:
    if isinstance(value, dict):
        low, high = to_number(value.get("min")), to_number(value.get("max"))
        if low is None or high is None:
            return None
        return NumericExact(low) if low == high else NumericRange(min(low, high), max(low, high))
    if isinstance(value, str):
        text = value.translate(MINUS_VARIANTS).strip()
        rng = RANGE_RE.search(text)
        if rng:
            low, high = float(rng.group(1)), float(rng.group(2))
            return NumericExact(low) if low == high else NumericRange(min(low, high), max(low, high))
    number = to_number(value)
    return NumericExact(number) if number is not None else None


def parse_key(value: Any, qtype: Any) -> AnswerKey:
    if is_bonus_key(value):
        return AnswerKey(bonus=True)
    if qtype == QuestionType.NAT:
        pieces = split_alternatives(value) if isinstance(value, str) else (value if isinstance(value, list) else [value])
        parsed = (to_numeric_alternative(piece) for piece in pieces)
        return AnswerKey(tuple(alt for alt in parsed if alt is not None))
    if isinstance(value, (list, tuple)):
        groups = [to_option_set(value)]
    elif isinstance(value, str):
        groups = [to_option_set(segment) for segment in split_alternatives(value)]
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        groups = [to_option_set(str(value))]
    else:
        groups = []
    return AnswerKey(tuple(OptionGroup(group) for group in groups if group))
