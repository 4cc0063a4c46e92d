import logging
import os
import atexit
from datetime import datetime, timedelta, timezone

import click
from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, jsonify, redirect, render_template, request, url_for
from flask_login import LoginManager, current_user, login_required, login_user, logout_user
from flask_session import Session
from werkzeug.middleware.proxy_fix import ProxyFix

from trivia_errors import (
    AlreadyExists, InvalidCredentials, InvalidQuestionIndex, NoQuestionsAvailable,
    NotFound, StoreFailure, TriviaError,
)
from trivia_fetch import CATEGORIES, DEFAULT_API_URL, DEFAULT_TOPICS, QuestionFetcher
from trivia_quiz import POINTS_PER_CORRECT, QuizEngine, public_question
from trivia_store import CredentialStore, QuestionCache, ScoreLedger, TriviaStore

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Flask-Login setup
login_manager = LoginManager()
login_manager.login_view = 'main.index'

bp = Blueprint('main', __name__, cli_group=None)


def _env_bool(name, default=False):
    return os.environ.get(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config():
    """Application settings from the environment."""
    return {
        'SECRET_KEY': os.environ.get('SECRET_KEY', 'trivia-dev-secret-key-change-in-production'),
        'REDIS_URL': os.environ.get('REDIS_URL', 'redis://127.0.0.1:6379/0'),
        'SESSION_LIFETIME_MINUTES': int(os.environ.get('SESSION_LIFETIME_MINUTES', 30)),
        'SESSION_COOKIE_SECURE': _env_bool('SESSION_COOKIE_SECURE'),
        'TRUST_PROXY': _env_bool('TRUST_PROXY'),
        'TRIVIA_API_URL': os.environ.get('TRIVIA_API_URL', DEFAULT_API_URL),
        'TRIVIA_AMOUNT': int(os.environ.get('TRIVIA_AMOUNT', 3)),
        'TRIVIA_DIFFICULTY': os.environ.get('TRIVIA_DIFFICULTY', 'easy'),
        'TRIVIA_TYPE': os.environ.get('TRIVIA_TYPE', 'boolean'),
        'TRIVIA_LANGUAGE': os.environ.get('TRIVIA_LANGUAGE', 'es'),
        'TRIVIA_API_TIMEOUT': float(os.environ.get('TRIVIA_API_TIMEOUT', 30)),
        'FETCH_DELAY_SECONDS': float(os.environ.get('FETCH_DELAY_SECONDS', 10)),
        'QUESTION_TTL_DAYS': int(os.environ.get('QUESTION_TTL_DAYS', 7)),
        'POINTS_PER_CORRECT': int(os.environ.get('POINTS_PER_CORRECT', POINTS_PER_CORRECT)),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO'),
    }


def create_app(config=None, store=None):
    """Build the app. ``store`` is a TriviaStore; one is created from REDIS_URL if omitted."""
    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    # Trust proxy headers when running behind a reverse proxy
    if app.config['TRUST_PROXY']:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

    if store is None:
        store = TriviaStore(app.config['REDIS_URL'])
        atexit.register(store.close)
    store.connect()

    # Server-side sessions in Redis, sliding expiry
    app.config['SESSION_TYPE'] = 'redis'
    app.config['SESSION_REDIS'] = store.session_client
    app.config['SESSION_PERMANENT'] = True
    app.config['SESSION_REFRESH_EACH_REQUEST'] = True
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(minutes=app.config['SESSION_LIFETIME_MINUTES'])
    Session(app)

    login_manager.init_app(app)

    questions = QuestionCache(store, ttl_days=app.config['QUESTION_TTL_DAYS'])
    scores = ScoreLedger(store)
    app.extensions['trivia'] = {
        'store': store,
        'credentials': CredentialStore(store),
        'questions': questions,
        'scores': scores,
        'engine': QuizEngine(questions, scores, points=app.config['POINTS_PER_CORRECT']),
        'fetcher': QuestionFetcher(
            questions,
            api_url=app.config['TRIVIA_API_URL'],
            amount=app.config['TRIVIA_AMOUNT'],
            difficulty=app.config['TRIVIA_DIFFICULTY'],
            question_type=app.config['TRIVIA_TYPE'],
            language=app.config['TRIVIA_LANGUAGE'],
            delay_seconds=app.config['FETCH_DELAY_SECONDS'],
            timeout=app.config['TRIVIA_API_TIMEOUT'],
        ),
    }

    app.register_blueprint(bp)
    return app


def services():
    return current_app.extensions['trivia']


def get_today():
    """Today's date (UTC) as YYYY-MM-DD, the key of the daily question sets."""
    return datetime.now(timezone.utc).date().isoformat()


@login_manager.user_loader
def load_user(user_id):
    return services()['credentials'].get_user(user_id)


def _request_data():
    """JSON object body, or the form when the body is not a JSON object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else request.form


def _text_field(data, name, strip=True):
    """String field of the body; non-string values count as missing."""
    value = data.get(name)
    if not isinstance(value, str):
        return ''
    return value.strip() if strip else value


def _text(message, status=200):
    return message, status, {'Content-Type': 'text/plain; charset=utf-8'}


def _error_redirect(message):
    return redirect(url_for('main.error', message=message))


@bp.app_errorhandler(StoreFailure)
def handle_store_failure(e):
    """Store errors outside a route's own handling, e.g. while loading the session user."""
    logger.error("Unhandled store error on %s: %s", request.path, e)
    return _text('Service temporarily unavailable.', 500)


# ============ PAGE ROUTES ============

@bp.route('/')
def index():
    if current_user.is_authenticated:
        return redirect(url_for('main.home'))
    return render_template('login.html')


@bp.route('/home')
@login_required
def home():
    return render_template('home.html', username=current_user.username, categories=CATEGORIES)


@bp.route('/error')
def error():
    return render_template('error.html', error_message=request.args.get('message', ''))


# ============ AUTH ROUTES ============

@bp.route('/register', methods=['POST'])
def register():
    data = _request_data()
    username = _text_field(data, 'username')
    email = _text_field(data, 'email')
    password = _text_field(data, 'password', strip=False)

    if not username or not email or not password:
        return _error_redirect('Username, email and password are required.')

    try:
        user = services()['credentials'].register(email, username, password)
    except AlreadyExists:
        return _error_redirect('This user is already registered.')
    except TriviaError as e:
        logger.error("Error registering user %s: %s", email, e)
        return _error_redirect('Error registering the user.')

    login_user(user)
    return redirect(url_for('main.home'))


@bp.route('/login', methods=['POST'])
def login():
    data = _request_data()
    email = _text_field(data, 'email')
    password = _text_field(data, 'password', strip=False)

    try:
        user = services()['credentials'].authenticate(email, password)
    except NotFound:
        return _error_redirect('User does not exist.')
    except InvalidCredentials:
        return _error_redirect('Incorrect password.')
    except TriviaError as e:
        logger.error("Error logging in %s: %s", email, e)
        return _error_redirect('Error logging in.')

    login_user(user)
    return redirect(url_for('main.home'))


@bp.route('/logout')
def logout():
    """Log out user."""
    logout_user()
    return redirect(url_for('main.index'))


# ============ QUIZ ROUTES ============

@bp.route('/category/<topic>')
def category(topic):
    try:
        quiz = services()['engine'].start(topic, get_today())
    except NoQuestionsAvailable:
        return render_template('error.html',
                               error_message='No questions available for this category.')
    except StoreFailure as e:
        logger.error("Error loading questions for %s: %s", topic, e)
        return _text('Error loading the questions.', 500)

    return render_template(
        'questions_one_by_one.html',
        topic=topic,
        category=CATEGORIES.get(topic),
        question=public_question(quiz['question']),
        total_questions=quiz['total'],
    )


@bp.route('/category/<topic>/next-question', methods=['POST'])
def next_question(topic):
    data = _request_data()
    username = current_user.username if current_user.is_authenticated else None

    try:
        result = services()['engine'].answer(
            topic,
            data.get('questionIndex'),
            data.get('answer'),
            username,
            get_today(),
        )
    except InvalidQuestionIndex as e:
        return jsonify({'error': str(e)}), 400
    except NoQuestionsAvailable as e:
        return jsonify({'error': str(e)}), 404
    except StoreFailure as e:
        logger.error("Error processing answer for %s: %s", topic, e)
        return _text('Error processing the answer.', 500)

    if 'question' in result:
        result['question'] = public_question(result['question'])
    return jsonify(result)


@bp.route('/fetch-questions')
def fetch_questions():
    """Fetch today's questions for every topic. Blocks for the whole delay sequence."""
    try:
        services()['fetcher'].fetch_and_cache(DEFAULT_TOPICS, get_today())
    except Exception as e:
        logger.error("Error updating questions: %s", e, exc_info=True)
        return _text('Error updating the questions.', 500)
    return _text('Questions updated.')


@bp.cli.command('fetch-questions')
@click.argument('topics', nargs=-1)
def fetch_questions_command(topics):
    """Fetch today's questions for TOPICS (all topics by default)."""
    summary = services()['fetcher'].fetch_and_cache(topics or DEFAULT_TOPICS, get_today())
    for topic, count in summary.items():
        click.echo(f"{topic}: {count} questions")


# ============ LEADERBOARD ROUTES ============

@bp.route('/scores/general')
def scores_general():
    try:
        scores = services()['scores'].top_scores('global')
    except StoreFailure as e:
        logger.error("Error reading global scores: %s", e)
        return _text('Error loading the scores.', 500)
    return render_template('scores_general.html', scores=scores)


@bp.route('/scores/personal')
@login_required
def scores_personal():
    try:
        scores = services()['scores'].top_scores('personal', current_user.username)
    except StoreFailure as e:
        logger.error("Error reading scores for %s: %s", current_user.username, e)
        return _text('Error loading the scores.', 500)
    return render_template('scores_personal.html', scores=scores, username=current_user.username)


@bp.route('/api/health')
def health_check():
    """Health check endpoint for monitoring."""
    try:
        services()['store'].ping()
    except StoreFailure as e:
        return jsonify({
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }), 500

    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })


# ============ MAIN ============

if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 3000))
    debug = os.environ.get('FLASK_ENV', 'development') == 'development'
    app.run(debug=debug, port=port, host='0.0.0.0')
