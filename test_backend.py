from fastapi.testclient import TestClient
from flashdrill import main
from flashdrill.scheduler import ReviewScheduler
from flashdrill.services import DeckService
import pytest
import random


@pytest.fixture
def client(tmp_path, monkeypatch):
    service = DeckService(data_dir=str(tmp_path), scheduler=ReviewScheduler(rng=random.Random(0)))
    monkeypatch.setattr(main, "service", service)
    with TestClient(main.app) as client:
        yield client


def test_api_flow(client):
    # 1. Empty store
    response = client.get("/stats")
    assert response.status_code == 200
    assert response.json()["total_cards"] == 0

    # 2. Deck with two cards
    response = client.post("/decks", json={"name": "Verbs", "description": "Irregular"})
    assert response.status_code == 200
    deck_id = response.json()["id"]

    for front, back in (("ser", "to be"), ("ir", "to go")):
        response = client.post(f"/decks/{deck_id}/cards", json={"front": front, "back": back, "examples": ["x"]})
        assert response.status_code == 200

    response = client.get(f"/decks/{deck_id}/due")
    assert len(response.json()) == 2

    # 3. Start study
    response = client.post("/study/start", json={"deck_id": deck_id})
    data = response.json()
    assert data["started"] is True
    assert data["session"]["remaining"] == 2
    first = data["session"]["current_card"]["front"]

    response = client.post("/study/toggle-answer")
    assert response.json()["show_answer"] is True

    # 4. Again pushes the card behind the other one
    response = client.post("/study/review", json={"response": "again"})
    data = response.json()
    assert data["card"]["front"] == first
    assert data["card"]["difficulty"] == "hard"
    assert data["session"]["remaining"] == 2
    assert data["session"]["show_answer"] is False
    assert data["session"]["current_card"]["front"] != first

    # 5. Easy on both finishes the session
    client.post("/study/review", json={"response": "easy"})
    response = client.post("/study/review", json={"response": "easy"})
    data = response.json()
    assert data["card"]["front"] == first
    assert data["card"]["interval"] == 3
    assert data["session"]["active"] is False

    # 6. Late review is a no-op
    response = client.post("/study/review", json={"response": "good"})
    assert response.status_code == 200
    assert response.json()["card"] is None

    # 7. Nothing left to study
    response = client.post("/study/start", json={"deck_id": deck_id})
    assert response.json()["started"] is False

    response = client.get("/stats")
    assert response.json()["reviewed_today"] == 2


def test_end_study_twice(client):
    deck_id = client.post("/decks", json={"name": "Verbs"}).json()["id"]
    client.post(f"/decks/{deck_id}/cards", json={"front": "ser", "back": "to be"})
    client.post("/study/start", json={"deck_id": deck_id})

    first = client.post("/study/end").json()
    second = client.post("/study/end").json()
    assert first == second
    assert first["active"] is False


def test_card_and_deck_edits(client):
    deck_id = client.post("/decks", json={"name": "Verbs"}).json()["id"]
    card_id = client.post(f"/decks/{deck_id}/cards", json={"front": "ser", "back": "to be"}).json()["id"]

    response = client.put(f"/cards/{card_id}", json={"front": "estar", "back": "to be"})
    assert response.json()["front"] == "estar"

    response = client.put(f"/decks/{deck_id}", json={"name": "Basic verbs"})
    assert response.json()["name"] == "Basic verbs"

    assert client.delete(f"/cards/{card_id}").status_code == 200
    assert client.get(f"/decks/{deck_id}").json()["cards"] == []

    assert client.delete(f"/decks/{deck_id}").status_code == 200
    assert client.get("/decks").json() == []


def test_unknown_ids_are_404(client):
    assert client.get("/decks/missing").status_code == 404
    assert client.post("/study/start", json={"deck_id": "missing"}).status_code == 404
    assert client.post("/decks/missing/cards", json={"front": "a", "back": "b"}).status_code == 404
    assert client.delete("/cards/missing").status_code == 404
    assert client.post("/study/review", json={"response": "meh"}).status_code == 422
