"""Populate the question cache from the Open Trivia DB."""
import html
import logging
import time

import requests

from trivia_errors import ExternalSourceFailure, TriviaError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://opentdb.com/api.php"

# Topics and their Open Trivia DB category ids
CATEGORIES = {
    'geografia': {
        'name': 'Geografía',
        'category_id': 22,
        'icon': 'map',
        'color': '#DDA0DD',
    },
    'historia': {
        'name': 'Historia',
        'category_id': 23,
        'icon': 'landmark',
        'color': '#4ECDC4',
    },
    'naturaleza': {
        'name': 'Naturaleza',
        'category_id': 17,
        'icon': 'flask',
        'color': '#45B7D1',
    },
    'random': {
        'name': 'Conocimiento general',
        'category_id': 9,
        'icon': 'globe',
        'color': '#FF6B6B',
    },
}

DEFAULT_TOPICS = list(CATEGORIES)


def normalize_question(raw: dict) -> dict:
    """Keep the fields we serve and decode the API's HTML entities."""
    try:
        return {
            'question': html.unescape(raw['question']),
            'correct_answer': html.unescape(raw['correct_answer']),
            'incorrect_answers': [html.unescape(a) for a in raw.get('incorrect_answers', [])],
            'category': html.unescape(raw.get('category', '')),
            'difficulty': raw.get('difficulty', ''),
            'type': raw.get('type', ''),
        }
    except (KeyError, TypeError) as e:
        raise ExternalSourceFailure(f"Malformed question in response: {raw!r}") from e


class QuestionFetcher:
    """Sequential, rate-limited fetch of one small question batch per topic.

    Topics are processed one after another with a flat delay after every topic
    that reached the API. A failing topic is logged and skipped; there are no
    retries, the topic simply stays empty until the next fetch.
    """

    def __init__(
        self,
        cache,
        api_url=DEFAULT_API_URL,
        amount=3,
        difficulty='easy',
        question_type='boolean',
        language='es',
        delay_seconds=10,
        timeout=30,
        http=None,
        sleep=time.sleep,
    ):
        self.cache = cache
        self.api_url = api_url
        self.amount = amount
        self.difficulty = difficulty
        self.question_type = question_type
        self.language = language
        self.delay_seconds = delay_seconds
        self.timeout = timeout
        self.http = http or requests.Session()
        self._sleep = sleep

    def build_params(self, category_id: int) -> dict:
        return {
            'amount': self.amount,
            'category': category_id,
            'difficulty': self.difficulty,
            'type': self.question_type,
            'lang': self.language,
        }

    def fetch_topic(self, topic: str, category_id: int) -> list[dict]:
        """Fetch and normalize one batch of questions for a category."""
        params = self.build_params(category_id)
        logger.info("Fetching questions for %s from %s params=%s", topic, self.api_url, params)

        try:
            response = self.http.get(self.api_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise ExternalSourceFailure(f"Request for {topic} failed: {e}") from e
        except ValueError as e:
            raise ExternalSourceFailure(f"Invalid JSON for {topic}: {e}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get('results'), list):
            raise ExternalSourceFailure(f"Unexpected response for {topic}: {payload!r}")

        if payload.get('response_code', 0) != 0:
            logger.warning("Trivia API returned response_code=%s for %s",
                           payload['response_code'], topic)

        return [normalize_question(q) for q in payload['results']]

    def fetch_and_cache(self, topics, day) -> dict:
        """Fetch every topic in order and cache it under ``day``.

        Returns the number of questions stored per topic (0 when skipped or failed).
        """
        summary = {}
        for topic in topics:
            summary[topic] = 0
            category = CATEGORIES.get(topic)
            if category is None:
                logger.warning("No category defined for topic %s", topic)
                continue

            try:
                questions = self.fetch_topic(topic, category['category_id'])
                if not questions:
                    logger.warning("No questions found for %s", topic)
                    continue

                summary[topic] = self.cache.save(topic, day, questions)
                logger.info("Saved %d questions for %s on %s", summary[topic], topic, day)
            except TriviaError as e:
                logger.error("Error fetching questions for %s: %s", topic, e, exc_info=True)

            if self.delay_seconds:
                self._sleep(self.delay_seconds)

        return summary
