from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Union
from datetime import datetime, timezone
from enum import Enum
import logging
import math

MIN_EASE = 1.3
MAX_EASE = 2.5
MATURE_INTERVAL_DAYS = 21


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Lenient timestamp parsing, unreadable values become None."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            logging.warning(f"Unreadable timestamp {value!r}, dropping it")
            return None
    return as_utc(value) if isinstance(value, datetime) else None


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ReviewResponse(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class Card(BaseModel):
    id: str
    deck_id: str = ""
    front: str = ""
    back: str = ""
    pronunciation: Optional[str] = None
    examples: List[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    # Holds the raw value when it can't be parsed, so the due filter can flag it
    next_review_date: Optional[Union[datetime, str]] = None
    review_count: int = Field(default=0, ge=0)
    ease_factor: float = Field(default=MAX_EASE, ge=MIN_EASE, le=MAX_EASE)
    interval: int = Field(default=1, ge=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("next_review_date", mode="before")
    @classmethod
    def _parse_review_date(cls, value):
        if value is None:
            return None
        if isinstance(value, datetime):
            return as_utc(value)
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                return as_utc(datetime.fromisoformat(value.strip()))
            except ValueError:
                return value
        return str(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value):
        return parse_timestamp(value)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _parse_difficulty(cls, value):
        if isinstance(value, Difficulty):
            return value
        try:
            return Difficulty(str(value).strip().lower())
        except ValueError:
            logging.warning(f"Unknown difficulty {value!r}, using medium")
            return Difficulty.MEDIUM

    @field_validator("ease_factor", mode="before")
    @classmethod
    def _clamp_ease(cls, value):
        try:
            ease = float(value)
        except (TypeError, ValueError):
            logging.warning(f"Unreadable ease_factor {value!r}, using {MAX_EASE}")
            return MAX_EASE
        if math.isnan(ease):
            return MAX_EASE
        clamped = min(MAX_EASE, max(MIN_EASE, ease))
        if clamped != ease:
            logging.warning(f"ease_factor {ease} clamped to {clamped}")
        return clamped

    @field_validator("interval", mode="before")
    @classmethod
    def _clamp_interval(cls, value):
        try:
            interval = int(float(value))
        except (TypeError, ValueError, OverflowError):
            logging.warning(f"Unreadable interval {value!r}, using 1")
            return 1
        if interval < 1:
            logging.warning(f"interval {interval} clamped to 1")
            return 1
        return interval

    @field_validator("review_count", mode="before")
    @classmethod
    def _clamp_review_count(cls, value):
        try:
            return max(0, int(float(value)))
        except (TypeError, ValueError, OverflowError):
            logging.warning(f"Unreadable review_count {value!r}, using 0")
            return 0

    @field_validator("examples", mode="before")
    @classmethod
    def _split_examples(cls, value):
        # CSV rows store examples pipe-separated
        if isinstance(value, str):
            return [part for part in value.split("|") if part]
        return value


class Deck(BaseModel):
    id: str
    name: str
    description: str = ""
    cards: List[Card] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value):
        return parse_timestamp(value)


class ReviewSession(BaseModel):
    deck_id: str
    cards_to_review: List[Card]
    current_card_index: int = 0
    total_cards: int
    completed_cards: int = 0


class SessionView(BaseModel):
    active: bool
    deck_id: Optional[str] = None
    current_card: Optional[Card] = None
    current_card_index: int = 0
    remaining: int = 0
    total_cards: int = 0
    completed_cards: int = 0
    show_answer: bool = False
    # Another card is queued after the current one
    has_next: bool = False


class StudyStats(BaseModel):
    total_cards: int
    reviewed_today: int
    cards_learning: int
    cards_mature: int


# --- Request bodies ---

class DeckRequest(BaseModel):
    name: str
    description: str = ""


class CardRequest(BaseModel):
    front: str
    back: str
    pronunciation: Optional[str] = None
    examples: List[str] = Field(default_factory=list)


class StudyRequest(BaseModel):
    deck_id: str


class ReviewRequest(BaseModel):
    response: ReviewResponse
