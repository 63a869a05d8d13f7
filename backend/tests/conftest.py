import copy
import os
import sys
import pytest

# Ensure the backend root (containing the `scorecraft` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from scorecraft import create_app, db, socketio
from scorecraft.samples import HEARTS, SKULL_KING, YAHTZEE


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    FORMULA_TIMEOUT_MS = 1000
    FORMULA_VALIDATION_TIMEOUT_MS = 100
    FORMULA_MAX_STEPS = 10000
    MIN_PLAYERS = 2
    SESSION_CODE_LENGTH = 4


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import scorecraft.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def skull_king():
    return copy.deepcopy(SKULL_KING)


@pytest.fixture()
def hearts():
    return copy.deepcopy(HEARTS)


@pytest.fixture()
def yahtzee():
    return copy.deepcopy(YAHTZEE)


@pytest.fixture()
def simple_game():
    """Two fixed rounds, one per-player points field, highest score wins."""
    return {
        'metadata': {'name': 'Simple', 'description': 'Points per round', 'minPlayers': 2, 'maxPlayers': 4},
        'rounds': {
            'type': 'fixed',
            'count': 2,
            'fields': [
                {'id': 'points', 'label': 'Points', 'type': 'number', 'perPlayer': True,
                 'validation': {'min': 0, 'required': True}},
            ],
        },
        'scoring': {
            'formulas': [
                {'id': 'points', 'name': 'Points', 'expression': 'points', 'variables': ['points'],
                 'scope': 'per-round'},
            ],
        },
        'winCondition': {'type': 'highest-score'},
    }
