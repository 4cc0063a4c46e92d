"""Exceptions raised by the trivia stores, fetcher and quiz engine."""


class TriviaError(Exception):
    """Base exception for trivia quiz errors."""
    pass


class NotFound(TriviaError):
    """Requested user or record does not exist."""
    pass


class AlreadyExists(TriviaError):
    """A user with this email is already registered."""
    pass


class InvalidCredentials(TriviaError):
    """Password does not match the stored hash."""
    pass


class NoQuestionsAvailable(NotFound):
    """No cached questions for the topic and date."""
    pass


class InvalidQuestionIndex(TriviaError):
    """Client sent a question index that is not an integer in range."""
    pass


class ExternalSourceFailure(TriviaError):
    """The trivia API failed or returned an unexpected payload."""
    pass


class StoreFailure(TriviaError):
    """The backing Redis store is unreachable or returned an error."""
    pass
