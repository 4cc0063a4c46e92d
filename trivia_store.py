"""Redis-backed stores: connection lifecycle, users, cached questions and scores."""
import json
import logging
from datetime import date, timedelta
from functools import wraps
from typing import Optional

import redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from trivia_errors import AlreadyExists, InvalidCredentials, NotFound, StoreFailure

logger = logging.getLogger(__name__)


def _store_call(func):
    """Translate redis errors raised by a store method into StoreFailure."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except redis.RedisError as e:
            logger.error("Redis error in %s: %s", func.__qualname__, e)
            raise StoreFailure(f"Store error: {e}") from e
    return wrapper


def _day_key(day):
    return day.isoformat() if isinstance(day, date) else str(day)


class TriviaStore:
    """Redis connection manager.

    Two clients share the same server: ``client`` decodes responses to str and
    is used by the stores below, ``session_client`` returns raw bytes for the
    Flask-Session blobs.
    """

    def __init__(
        self,
        url: str = "redis://127.0.0.1:6379/0",
        client: Optional[redis.Redis] = None,
        session_client: Optional[redis.Redis] = None,
        retries: int = 3,
        health_check_interval: int = 30,
    ):
        self.url = url
        self.retries = retries
        self.health_check_interval = health_check_interval
        self._client = client
        self._session_client = session_client

    def _build_client(self, decode_responses: bool) -> redis.Redis:
        return redis.Redis.from_url(
            self.url,
            decode_responses=decode_responses,
            retry=Retry(ExponentialBackoff(), self.retries),
            retry_on_error=[redis.exceptions.ConnectionError, redis.exceptions.TimeoutError],
            health_check_interval=self.health_check_interval,
        )

    def connect(self) -> redis.Redis:
        """Create the clients if needed. Connections are opened lazily by the pool."""
        if self._client is None:
            logger.info("Connecting to Redis at %s", self.url)
            self._client = self._build_client(decode_responses=True)
        if self._session_client is None:
            self._session_client = self._build_client(decode_responses=False)
        return self._client

    @property
    def client(self) -> redis.Redis:
        return self._client if self._client is not None else self.connect()

    @property
    def session_client(self) -> redis.Redis:
        if self._session_client is None:
            self.connect()
        return self._session_client

    @_store_call
    def ping(self) -> bool:
        return bool(self.client.ping())

    def close(self):
        """Close both clients."""
        for conn in (self._client, self._session_client):
            if conn is not None:
                conn.close()
        self._client = None
        self._session_client = None


# User class for Flask-Login
class User(UserMixin):
    def __init__(self, email, username):
        self.id = email
        self.email = email
        self.username = username


class CredentialStore:
    """Users keyed by email in the ``users`` hash."""

    USERS_KEY = "users"

    def __init__(self, store: TriviaStore):
        self.store = store

    @_store_call
    def register(self, email: str, username: str, password: str) -> User:
        """Create a user. HSETNX keeps an existing record (and its hash) untouched."""
        record = json.dumps({"username": username, "password": generate_password_hash(password)})
        if not self.store.client.hsetnx(self.USERS_KEY, email, record):
            raise AlreadyExists(f"User {email} is already registered")
        logger.info("Registered user %s", email)
        return User(email, username)

    @_store_call
    def authenticate(self, email: str, password: str) -> User:
        raw = self.store.client.hget(self.USERS_KEY, email)
        if raw is None:
            raise NotFound(f"User {email} does not exist")

        data = json.loads(raw)
        if not check_password_hash(data["password"], password):
            raise InvalidCredentials(f"Wrong password for {email}")
        return User(email, data["username"])

    @_store_call
    def get_user(self, email: str) -> Optional[User]:
        raw = self.store.client.hget(self.USERS_KEY, email)
        if raw is None:
            return None
        return User(email, json.loads(raw)["username"])


class QuestionCache:
    """Questions per (topic, day) in ``questions:<topic>:<YYYY-MM-DD>`` hashes.

    Field ``i`` holds question ``i`` as JSON. Writes go field by field, so a
    refetch overwrites by index and a reader may see a partially refreshed day.
    """

    def __init__(self, store: TriviaStore, ttl_days: int = 7):
        self.store = store
        self.ttl = timedelta(days=ttl_days) if ttl_days else None

    @staticmethod
    def key(topic: str, day) -> str:
        return f"questions:{topic}:{_day_key(day)}"

    @_store_call
    def save(self, topic: str, day, questions: list[dict]) -> int:
        key = self.key(topic, day)
        pipe = self.store.client.pipeline(transaction=False)
        for i, question in enumerate(questions):
            pipe.hset(key, str(i), json.dumps(question))
        if self.ttl:
            pipe.expire(key, self.ttl)
        pipe.execute()
        return len(questions)

    @_store_call
    def get_questions(self, topic: str, day) -> list[dict]:
        """Return the cached questions in index order, or [] if none."""
        raw = self.store.client.hgetall(self.key(topic, day))
        return [json.loads(raw[field]) for field in sorted(raw, key=int)]


class ScoreLedger:
    """Global and per-user leaderboards as Redis sorted sets."""

    GLOBAL_KEY = "scores:global"

    def __init__(self, store: TriviaStore):
        self.store = store

    @staticmethod
    def personal_key(username: str) -> str:
        return f"scores:personal:{username}"

    @_store_call
    def award(self, username: str, topic: str, amount: int) -> tuple[int, int]:
        """Add points to the user's topic score and to their global score.

        Both increments run in one MULTI/EXEC. Returns (personal, global) totals.
        """
        pipe = self.store.client.pipeline(transaction=True)
        pipe.zincrby(self.personal_key(username), amount, topic)
        pipe.zincrby(self.GLOBAL_KEY, amount, username)
        personal, total = pipe.execute()
        return int(personal), int(total)

    @_store_call
    def top_scores(self, scope: str = "global", user_id: Optional[str] = None) -> list[tuple[str, int]]:
        """All (name, score) pairs of a leaderboard, highest score first."""
        if scope == "global":
            key = self.GLOBAL_KEY
        elif scope == "personal":
            if not user_id:
                raise ValueError("Personal scores need a user id")
            key = self.personal_key(user_id)
        else:
            raise ValueError(f"Unknown score scope: {scope!r}")

        entries = self.store.client.zrange(key, 0, -1, desc=True, withscores=True)
        return [(name, int(score)) for name, score in entries]
