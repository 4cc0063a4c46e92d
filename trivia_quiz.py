"""Question-by-question quiz flow over the cached questions of a day."""
import logging
from typing import Optional

from trivia_errors import InvalidQuestionIndex, NoQuestionsAvailable

logger = logging.getLogger(__name__)

POINTS_PER_CORRECT = 50


def parse_question_index(value) -> int:
    """Accept an int or a string of digits; anything else is rejected."""
    if isinstance(value, bool):
        raise InvalidQuestionIndex(f"Invalid question index: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    raise InvalidQuestionIndex(f"Invalid question index: {value!r}")


def public_question(question: Optional[dict]) -> Optional[dict]:
    """Question as sent to the browser, without the answers."""
    if question is None:
        return None
    if question.get('type') == 'boolean':
        options = ['True', 'False']
    else:
        options = sorted([question['correct_answer'], *question.get('incorrect_answers', [])])
    return {
        'question': question['question'],
        'category': question.get('category', ''),
        'difficulty': question.get('difficulty', ''),
        'type': question.get('type', ''),
        'options': options,
    }


class QuizEngine:
    """Walks a client through the questions of one topic for one day.

    Progress is not stored: the client sends back the index of the question it
    answered, and the engine answers with the next question.
    """

    def __init__(self, questions, scores, points=POINTS_PER_CORRECT):
        self.questions = questions
        self.scores = scores
        self.points = points

    def _load(self, topic, day):
        questions = self.questions.get_questions(topic, day)
        if not questions:
            raise NoQuestionsAvailable(f"No questions available for {topic} on {day}")
        return questions

    def start(self, topic: str, day) -> dict:
        questions = self._load(topic, day)
        return {
            'topic': topic,
            'question': questions[0],
            'index': 0,
            'total': len(questions),
        }

    def answer(self, topic: str, question_index, answer, username: Optional[str], day) -> dict:
        """Check the answer at ``question_index`` and move to the next question.

        Correct answers are worth ``points`` on the user's topic and global
        scores. The returned dict has no ``question`` key once the quiz is over.
        """
        index = parse_question_index(question_index)
        questions = self._load(topic, day)
        if not 0 <= index < len(questions):
            raise InvalidQuestionIndex(
                f"Question index {index} out of range for {len(questions)} questions")

        correct = questions[index]['correct_answer'] == answer
        if correct:
            if username:
                self.scores.award(username, topic, self.points)
            else:
                logger.warning("Correct answer for %s without a user, no points awarded", topic)

        next_index = index + 1
        result = {
            'nextIndex': next_index,
            'finished': next_index >= len(questions),
            'correct': correct,
        }
        if next_index < len(questions):
            result['question'] = questions[next_index]
        return result
