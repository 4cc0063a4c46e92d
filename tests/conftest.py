"""Shared fixtures for the trivia quiz tests."""
from unittest.mock import MagicMock

import fakeredis
import pytest

from app import create_app
from trivia_store import CredentialStore, QuestionCache, ScoreLedger, TriviaStore

TODAY = "2026-10-19"


def make_response(payload):
    """A requests-like response returning ``payload`` from .json()."""
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def store(redis_server):
    """TriviaStore backed by an in-process fake Redis."""
    return TriviaStore(
        client=fakeredis.FakeRedis(server=redis_server, decode_responses=True),
        session_client=fakeredis.FakeRedis(server=redis_server),
    )


@pytest.fixture
def credentials(store):
    return CredentialStore(store)


@pytest.fixture
def question_cache(store):
    return QuestionCache(store, ttl_days=7)


@pytest.fixture
def ledger(store):
    return ScoreLedger(store)


@pytest.fixture
def sample_questions():
    """Three cached true/false questions, already normalized."""
    return [
        {
            "question": "The Nile flows through Egypt.",
            "correct_answer": "True",
            "incorrect_answers": ["False"],
            "category": "Geography",
            "difficulty": "easy",
            "type": "boolean",
        },
        {
            "question": "Madrid is the capital of Portugal.",
            "correct_answer": "False",
            "incorrect_answers": ["True"],
            "category": "Geography",
            "difficulty": "easy",
            "type": "boolean",
        },
        {
            "question": "Mount Everest is in Nepal.",
            "correct_answer": "True",
            "incorrect_answers": ["False"],
            "category": "Geography",
            "difficulty": "easy",
            "type": "boolean",
        },
    ]


@pytest.fixture
def api_payload(sample_questions):
    """Open Trivia DB style payload for the sample questions."""
    return {"response_code": 0, "results": [dict(q) for q in sample_questions]}


@pytest.fixture
def app(store, monkeypatch):
    monkeypatch.setattr("app.get_today", lambda: TODAY)
    return create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "FETCH_DELAY_SECONDS": 0,
        },
        store=store,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in_client(client):
    """Test client with a freshly registered user 'alice'."""
    client.post(
        "/register",
        data={"username": "alice", "email": "alice@example.com", "password": "secret123"},
    )
    return client
