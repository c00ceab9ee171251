import pandas as pd
import uuid
import logging
import os
import threading
from functools import wraps
from datetime import datetime, time, timezone
from typing import List, Optional

from pydantic import ValidationError

from .models import Card, Deck, ReviewResponse, SessionView, StudyStats, MATURE_INTERVAL_DAYS, MAX_EASE
from .scheduler import ReviewScheduler


class NotFoundError(LookupError):
    pass


DECK_COLUMNS = {
    'id': lambda: str(uuid.uuid4()),
    'name': '',
    'description': '',
    'created_at': '',
    'updated_at': '',
    'removed': '0',
}

CARD_COLUMNS = {
    'id': lambda: str(uuid.uuid4()),
    'deck_id': '',
    'front': '',
    'back': '',
    'pronunciation': '',
    'examples': '',
    'difficulty': 'medium',
    'next_review_date': '',
    'review_count': '0',
    'ease_factor': str(MAX_EASE),
    'interval': '1',
    'created_at': '',
    'updated_at': '',
    'removed': '0',
}

# Blank cells in these columns fall back to the default instead of failing validation
DEFAULTED_CARD_COLUMNS = ('difficulty', 'review_count', 'ease_factor', 'interval')

CONTENT_FIELDS = ('front', 'back', 'pronunciation', 'examples')

# (name, description, [(front, back, pronunciation, example)])
SAMPLE_DECKS = [
    ('Verb Tenses', 'Common English verb tenses', [
        ('Yo camino', 'I walk', 'ai wok', 'I walk to school every day.'),
        ('Él corrió', 'He ran', 'hi ran', 'He ran very fast.'),
        ('Nosotros hemos comido', 'We have eaten', 'wi hav iten', 'We have eaten lunch already.'),
    ]),
    ('Business English', 'Essential business vocabulary', [
        ('Reunión', 'Meeting', 'miting', 'We have a meeting at 3 PM.'),
        ('Informe', 'Report', 'riport', 'Please send me the report by Friday.'),
        ('Presupuesto', 'Budget', 'bachet', 'The project is within budget.'),
    ]),
    ('Irregular Verbs', 'Essential irregular verbs with past and past participle forms', [
        ('ser, estar', 'be - was/were - been', 'bi / wʌz-wər / bɪn', 'She has been here all day.'),
        ('empezar, comenzar', 'begin - began - begun', 'bɪ-gɪn / bɪ-gæn / bɪ-gʌn', 'The meeting began at 9 AM.'),
        ('traer, llevar', 'bring - brought - brought', 'bring / brot / brot', 'She brought wine to the party.'),
        ('comprar', 'buy - bought - bought', 'bai / bot / bot', 'He bought a new car.'),
        ('elegir', 'choose - chose - chosen', 'chus / chous / chousen', 'You chose the perfect gift.'),
    ]),
]


def locked(method):
    """Runs the method holding the store lock; request threads share one service."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class DeckService:
    """CSV-backed deck store that feeds the review scheduler and persists its results."""

    def __init__(self, data_dir: str = "data", scheduler: Optional[ReviewScheduler] = None):
        self.data_dir = data_dir
        self.decks_path = os.path.join(data_dir, "decks.csv")
        self.cards_path = os.path.join(data_dir, "cards.csv")
        self.decks_df = None
        self.cards_df = None
        self.scheduler = scheduler or ReviewScheduler()
        self._lock = threading.RLock()

    # --- Storage ---

    @locked
    def load_data(self) -> bool:
        """Loads both CSV files, starting empty ones when they don't exist yet."""
        try:
            self.decks_df = self._read_csv(self.decks_path, DECK_COLUMNS)
            self.cards_df = self._read_csv(self.cards_path, CARD_COLUMNS)
        except Exception as e:
            logging.error(f"Error loading CSV from {self.data_dir}: {e}")
            return False

        for col in DEFAULTED_CARD_COLUMNS:
            mask = self.cards_df[col] == ''
            self.cards_df.loc[mask, col] = CARD_COLUMNS[col]

        logging.info(f"Loaded {len(self._active(self.decks_df))} decks and "
                     f"{len(self._active(self.cards_df))} cards from {self.data_dir}")
        return True

    def _read_csv(self, path: str, columns: dict) -> pd.DataFrame:
        if os.path.exists(path):
            df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding='utf-8-sig')
        else:
            logging.info(f"No data at {path}, starting empty")
            df = pd.DataFrame(columns=list(columns))
        return self._ensure_columns(df, columns)

    def _ensure_columns(self, df: pd.DataFrame, columns: dict) -> pd.DataFrame:
        """Adds missing columns and fills blank ids."""
        for col, default in columns.items():
            if col not in df.columns:
                if callable(default):
                    df[col] = [default() for _ in range(len(df))]
                else:
                    df[col] = default

        mask = df['id'] == ''
        if mask.any():
            df.loc[mask, 'id'] = [str(uuid.uuid4()) for _ in range(mask.sum())]
        return df.astype(str)

    @locked
    def save_data(self):
        if self.decks_df is None or self.cards_df is None:
            return
        os.makedirs(self.data_dir, exist_ok=True)
        self.decks_df.to_csv(self.decks_path, index=False, encoding='utf-8-sig')
        self.cards_df.to_csv(self.cards_path, index=False, encoding='utf-8-sig')

    def _ensure_loaded(self):
        if self.decks_df is None or self.cards_df is None:
            self.load_data()

    @staticmethod
    def _active(df: pd.DataFrame) -> pd.DataFrame:
        return df[df['removed'] != '1']

    def _now(self) -> datetime:
        return self.scheduler.clock()

    # --- Row <-> model ---

    def _row_to_card(self, row: dict) -> Optional[Card]:
        data = {k: v for k, v in row.items() if k in Card.model_fields}
        try:
            return Card(**data)
        except ValidationError as e:
            logging.warning(f"Skipping malformed card {row.get('id')}: {e.error_count()} invalid fields")
            return None

    @staticmethod
    def _card_to_row(card: Card) -> dict:
        data = card.model_dump(mode="json")
        data['examples'] = '|'.join(card.examples)
        row = {k: '' if v is None else str(v) for k, v in data.items()}
        row['removed'] = '0'
        return row

    def _card_index(self, card_id: str) -> int:
        matches = self.cards_df.index[(self.cards_df['id'] == card_id) & (self.cards_df['removed'] != '1')].tolist()
        if not matches:
            raise NotFoundError(f"Card {card_id} not found")
        return matches[0]

    def _deck_index(self, deck_id: str) -> int:
        matches = self.decks_df.index[(self.decks_df['id'] == deck_id) & (self.decks_df['removed'] != '1')].tolist()
        if not matches:
            raise NotFoundError(f"Deck {deck_id} not found")
        return matches[0]

    def _write_card(self, card: Card):
        row = self._card_to_row(card)
        try:
            idx = self._card_index(card.id)
        except NotFoundError:
            self.cards_df = pd.concat([self.cards_df, pd.DataFrame([row])], ignore_index=True)
            return
        for k, v in row.items():
            if k in self.cards_df.columns:
                self.cards_df.at[idx, k] = v

    # --- Decks ---

    @locked
    def list_decks(self) -> List[Deck]:
        self._ensure_loaded()
        return [self.get_deck(deck_id) for deck_id in self._active(self.decks_df)['id']]

    @locked
    def get_deck(self, deck_id: str) -> Deck:
        self._ensure_loaded()
        row = self.decks_df.loc[self._deck_index(deck_id)].to_dict()
        card_rows = self._active(self.cards_df)
        card_rows = card_rows[card_rows['deck_id'] == deck_id]
        cards = [self._row_to_card(r) for r in card_rows.to_dict(orient='records')]
        return Deck(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            cards=[c for c in cards if c is not None],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    @locked
    def create_deck(self, name: str, description: str = "") -> Deck:
        self._ensure_loaded()
        now = self._now().isoformat()
        new_deck = {
            'id': str(uuid.uuid4()),
            'name': name,
            'description': description,
            'created_at': now,
            'updated_at': now,
            'removed': '0',
        }
        self.decks_df = pd.concat([self.decks_df, pd.DataFrame([new_deck])], ignore_index=True)
        self.save_data()
        return self.get_deck(new_deck['id'])

    @locked
    def update_deck(self, deck_id: str, name: str, description: str = "") -> Deck:
        self._ensure_loaded()
        idx = self._deck_index(deck_id)
        self.decks_df.at[idx, 'name'] = name
        self.decks_df.at[idx, 'description'] = description
        self.decks_df.at[idx, 'updated_at'] = self._now().isoformat()
        self.save_data()
        return self.get_deck(deck_id)

    @locked
    def delete_deck(self, deck_id: str):
        # Soft delete, cards go with the deck
        self._ensure_loaded()
        idx = self._deck_index(deck_id)
        self.decks_df.at[idx, 'removed'] = '1'
        self.cards_df.loc[self.cards_df['deck_id'] == deck_id, 'removed'] = '1'
        self.save_data()

        session = self.scheduler.session
        if session is not None and session.deck_id == deck_id:
            self.scheduler.end_review_session()

    def _touch_deck(self, deck_id: str):
        self.decks_df.at[self._deck_index(deck_id), 'updated_at'] = self._now().isoformat()

    @locked
    def seed_sample_decks(self) -> List[Deck]:
        """Creates the starter decks on an empty store. Returns the decks created."""
        self._ensure_loaded()
        if len(self._active(self.decks_df)):
            return []
        created = []
        for name, description, cards in SAMPLE_DECKS:
            deck = self.create_deck(name, description)
            for front, back, pronunciation, example in cards:
                self.add_card(deck.id, front, back, pronunciation, [example])
            created.append(self.get_deck(deck.id))
        logging.info(f"Seeded {len(created)} sample decks")
        return created

    # --- Cards ---

    @locked
    def add_card(self, deck_id: str, front: str, back: str,
                 pronunciation: Optional[str] = None, examples: Optional[List[str]] = None) -> Card:
        self._ensure_loaded()
        self._deck_index(deck_id)
        now = self._now()
        card = Card(
            id=str(uuid.uuid4()),
            deck_id=deck_id,
            front=front,
            back=back,
            pronunciation=pronunciation,
            examples=examples or [],
            next_review_date=now,
            created_at=now,
            updated_at=now,
        )
        self._write_card(card)
        self._touch_deck(deck_id)
        self.save_data()
        return card

    @locked
    def update_card(self, card_id: str, updates: dict) -> Card:
        self._ensure_loaded()
        idx = self._card_index(card_id)
        card = self._row_to_card(self.cards_df.loc[idx].to_dict())
        if card is None:
            raise NotFoundError(f"Card {card_id} is unreadable")

        content = {k: v for k, v in updates.items() if k in CONTENT_FIELDS}
        card = card.model_copy(update=content)
        card.updated_at = self._now()
        self._write_card(card)
        self.save_data()

        # Keep the copy held by a running session in sync
        session = self.scheduler.session
        if session is not None:
            for queued in session.cards_to_review:
                if queued.id == card_id:
                    for k, v in content.items():
                        setattr(queued, k, v)
        return card

    @locked
    def delete_card(self, card_id: str):
        self._ensure_loaded()
        idx = self._card_index(card_id)
        self.cards_df.at[idx, 'removed'] = '1'
        self.save_data()
        self.scheduler.remove_card(card_id)

    # --- Study ---

    @locked
    def due_cards(self, deck_id: str, now: Optional[datetime] = None) -> List[Card]:
        return self.scheduler.due_cards(self.get_deck(deck_id), now)

    @locked
    def start_session(self, deck_id: str) -> bool:
        return self.scheduler.start_review_session(self.get_deck(deck_id))

    @locked
    def review(self, response: ReviewResponse) -> Optional[Card]:
        """Applies the answer and writes the card back right away."""
        card = self.scheduler.review_card(response)
        if card is None:
            return None
        self._ensure_loaded()
        self._write_card(card)
        self.save_data()
        return card

    @locked
    def end_session(self):
        self.scheduler.end_review_session()

    @locked
    def toggle_answer(self) -> bool:
        return self.scheduler.toggle_answer()

    @locked
    def session_view(self) -> SessionView:
        return self.scheduler.session_view()

    # --- Stats ---

    @locked
    def get_stats(self, now: Optional[datetime] = None) -> StudyStats:
        self._ensure_loaded()
        if now is None:
            now = self._now()
        today = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)

        active_decks = self._active(self.decks_df)['id']
        active_df = self._active(self.cards_df)
        active_df = active_df[active_df['deck_id'].isin(active_decks)]

        intervals = pd.to_numeric(active_df['interval'], errors='coerce').fillna(1)
        updated = pd.to_datetime(active_df['updated_at'], errors='coerce', utc=True, format='ISO8601')
        mature = intervals >= MATURE_INTERVAL_DAYS

        return StudyStats(
            total_cards=int(len(active_df)),
            reviewed_today=int((updated >= today).sum()),
            cards_learning=int((~mature).sum()),
            cards_mature=int(mature.sum()),
        )
