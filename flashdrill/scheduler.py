import math
import random
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .models import (
    Card, Deck, Difficulty, ReviewResponse, ReviewSession, SessionView,
    MAX_EASE, as_utc, utcnow,
)

EASE_BONUS = 0.15

# (offset_base, offset_range) for cards that have to come back this session.
# The card is reinserted at index + base + randrange(range).
REQUEUE_OFFSETS: Dict[ReviewResponse, Tuple[int, int]] = {
    ReviewResponse.AGAIN: (1, 2),
    ReviewResponse.HARD: (2, 3),
    ReviewResponse.GOOD: (4, 4),
}

RESPONSE_DIFFICULTY = {
    ReviewResponse.AGAIN: Difficulty.HARD,
    ReviewResponse.HARD: Difficulty.HARD,
    ReviewResponse.GOOD: Difficulty.MEDIUM,
    ReviewResponse.EASY: Difficulty.EASY,
}


class QueueInvariantError(RuntimeError):
    """The session queue reached a state the requeue rules can't produce."""


def is_due(card: Card, now: datetime) -> bool:
    due = card.next_review_date
    if not isinstance(due, datetime):
        logging.warning(f"Card {card.id} has invalid next_review_date {due!r}, treating as due")
        return True
    return as_utc(due) <= as_utc(now)


def due_cards(cards: Iterable[Card], now: Optional[datetime] = None) -> List[Card]:
    """Cards whose next review instant is at or before ``now``, in input order."""
    if now is None:
        now = utcnow()
    return [card for card in cards if is_due(card, now)]


def update_card_for_response(card: Card, response: ReviewResponse, now: datetime) -> Card:
    """
    Applies one answer to the card in place.

    Only ``easy`` moves the long-term schedule: the ease factor grows (capped
    at MAX_EASE) and the interval is stretched by the new ease. Every other
    answer just retags the difficulty so the card keeps coming back in the
    current sitting.
    """
    card.review_count += 1
    card.updated_at = now
    card.difficulty = RESPONSE_DIFFICULTY[response]

    if response == ReviewResponse.EASY:
        card.ease_factor = min(MAX_EASE, card.ease_factor + EASE_BONUS)
        card.interval = max(1, math.ceil(card.interval * card.ease_factor))
        card.next_review_date = now + timedelta(days=card.interval)

    return card


class ReviewScheduler:
    """
    Runs one intensive study pass over a deck.

    Cards stay in the queue until they are answered ``easy``; anything else
    pushes them a few places further down. The scheduler owns the session and
    is not thread-safe, callers serialize access.
    """

    def __init__(self, rng: Optional[random.Random] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.rng = rng or random.Random()
        self.clock = clock
        self.session: Optional[ReviewSession] = None
        self.show_answer = False

    def due_cards(self, deck: Deck, now: Optional[datetime] = None) -> List[Card]:
        return due_cards(deck.cards, now or self.clock())

    def start_review_session(self, deck: Deck, now: Optional[datetime] = None) -> bool:
        """Returns False when the deck has nothing due."""
        due = self.due_cards(deck, now)
        if not due:
            logging.info(f"Deck {deck.id}: nothing to study")
            self.session = None
            return False

        queue = []
        seen = set()
        for card in due:
            if card.id in seen:
                logging.warning(f"Deck {deck.id}: duplicate card {card.id} dropped from session")
                continue
            seen.add(card.id)
            queue.append(card)

        self.session = ReviewSession(
            deck_id=deck.id,
            cards_to_review=queue,
            current_card_index=0,
            total_cards=len(queue),
            completed_cards=0,
        )
        self.show_answer = False
        logging.info(f"Started review session on deck {deck.id} with {len(queue)} cards")
        return True

    def end_review_session(self):
        if self.session is not None:
            logging.info(f"Ended review session on deck {self.session.deck_id}")
        self.session = None
        self.show_answer = False

    def toggle_answer(self) -> bool:
        if self.session is not None:
            self.show_answer = not self.show_answer
        return self.show_answer

    def current_card(self) -> Optional[Card]:
        if self.session is None:
            return None
        self._check_index(self.session)
        return self.session.cards_to_review[self.session.current_card_index]

    def review_card(self, response: ReviewResponse, now: Optional[datetime] = None) -> Optional[Card]:
        """
        Records the answer for the current card and reorders the queue.

        Returns the mutated card so the caller can persist it, or None when no
        session is running.
        """
        session = self.session
        if session is None:
            return None
        response = ReviewResponse(response)
        if now is None:
            now = self.clock()

        self._check_index(session)
        index = session.current_card_index
        queue = session.cards_to_review
        card = queue[index]

        update_card_for_response(card, response, now)

        queue.pop(index)
        if response == ReviewResponse.EASY:
            session.completed_cards += 1
            if index >= len(queue) and queue:
                session.current_card_index = 0
        else:
            offset_base, offset_range = REQUEUE_OFFSETS[response]
            position = min(index + offset_base + self.rng.randrange(offset_range), len(queue))
            queue.insert(position, card)
            logging.debug(f"Card {card.id} answered {response.value}, requeued at {position}")
            if session.current_card_index >= len(queue):
                session.current_card_index = 0

        if not queue:
            self.end_review_session()
        else:
            self._check_unique(session)
            self.show_answer = False
        return card

    def session_view(self) -> SessionView:
        session = self.session
        if session is None:
            return SessionView(active=False)
        remaining = len(session.cards_to_review)
        return SessionView(
            active=True,
            deck_id=session.deck_id,
            current_card=self.current_card(),
            current_card_index=session.current_card_index,
            remaining=remaining,
            total_cards=session.total_cards,
            completed_cards=session.completed_cards,
            show_answer=self.show_answer,
            has_next=remaining > 1,
        )

    def remove_card(self, card_id: str) -> bool:
        """Drops a card deleted elsewhere from the running session."""
        session = self.session
        if session is None:
            return False
        queue = session.cards_to_review
        for i, card in enumerate(queue):
            if card.id == card_id:
                queue.pop(i)
                if i < session.current_card_index:
                    session.current_card_index -= 1
                if not queue:
                    self.end_review_session()
                elif session.current_card_index >= len(queue):
                    session.current_card_index = 0
                return True
        return False

    @staticmethod
    def _check_index(session: ReviewSession):
        if not 0 <= session.current_card_index < len(session.cards_to_review):
            raise QueueInvariantError(
                f"current_card_index {session.current_card_index} outside queue "
                f"of {len(session.cards_to_review)}"
            )

    @staticmethod
    def _check_unique(session: ReviewSession):
        ids = [card.id for card in session.cards_to_review]
        if len(ids) != len(set(ids)):
            raise QueueInvariantError(f"Duplicate cards in session queue for deck {session.deck_id}")
