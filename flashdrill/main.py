from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from .services import DeckService, NotFoundError
from .scheduler import ReviewScheduler
from .config import settings
from .models import CardRequest, DeckRequest, ReviewRequest, StudyRequest
import logging
import random

# Configure logging
logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(levelname)s - %(message)s')

app = FastAPI(title="Flashdrill Review API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Singleton Service
service = DeckService(
    data_dir=settings.data_dir,
    scheduler=ReviewScheduler(rng=random.Random(settings.seed)),
)


@app.on_event("startup")
def startup_event():
    success = service.load_data()
    if not success:
        logging.warning("Could not load data on startup.")
    elif settings.seed_samples:
        service.seed_sample_decks()


def _not_found(e: NotFoundError):
    return HTTPException(status_code=404, detail=str(e.args[0]) if e.args else "Not found")


@app.get("/stats")
def get_stats():
    return service.get_stats()


# --- Decks ---

@app.get("/decks")
def list_decks():
    return service.list_decks()


@app.post("/decks")
def create_deck(request: DeckRequest):
    return service.create_deck(request.name, request.description)


@app.get("/decks/{deck_id}")
def get_deck(deck_id: str):
    try:
        return service.get_deck(deck_id)
    except NotFoundError as e:
        raise _not_found(e)


@app.put("/decks/{deck_id}")
def update_deck(deck_id: str, request: DeckRequest):
    try:
        return service.update_deck(deck_id, request.name, request.description)
    except NotFoundError as e:
        raise _not_found(e)


@app.delete("/decks/{deck_id}")
def delete_deck(deck_id: str):
    try:
        service.delete_deck(deck_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {"success": True}


@app.get("/decks/{deck_id}/due")
def get_due_cards(deck_id: str):
    try:
        return service.due_cards(deck_id)
    except NotFoundError as e:
        raise _not_found(e)


# --- Cards ---

@app.post("/decks/{deck_id}/cards")
def add_card(deck_id: str, card: CardRequest):
    try:
        return service.add_card(deck_id, card.front, card.back, card.pronunciation, card.examples)
    except NotFoundError as e:
        raise _not_found(e)


@app.put("/cards/{card_id}")
def update_card(card_id: str, card: CardRequest):
    try:
        return service.update_card(card_id, card.model_dump())
    except NotFoundError as e:
        raise _not_found(e)


@app.delete("/cards/{card_id}")
def delete_card(card_id: str):
    try:
        service.delete_card(card_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {"success": True}


# --- Study session ---

@app.post("/study/start")
def start_study(request: StudyRequest):
    try:
        started = service.start_session(request.deck_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {"started": started, "session": service.session_view()}


@app.get("/study/current")
def get_current():
    return service.session_view()


@app.post("/study/toggle-answer")
def toggle_answer():
    service.toggle_answer()
    return service.session_view()


@app.post("/study/review")
def review_card(request: ReviewRequest):
    # No session is a no-op, card comes back as null
    card = service.review(request.response)
    return {"card": card, "session": service.session_view()}


@app.post("/study/end")
def end_study():
    service.end_session()
    return service.session_view()
