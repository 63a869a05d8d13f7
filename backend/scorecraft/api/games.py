from flask import Blueprint, jsonify, request, current_app
from scorecraft import db, socketio
from scorecraft.models import Game, GameDefinition, PlaySession, Player
from scorecraft.services.games.definition import apply_corrections, check_game_definition
from scorecraft.services.games.expression import evaluator_from_config
from scorecraft.services.games.scoring import preview_formula, validate_formula
from scorecraft.services.games.session import COMPLETED, GameSession, SessionError
import re


games = Blueprint('games', __name__)


def _slugify(name: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', (name or '').lower()).strip('-')


def _evaluator():
    return evaluator_from_config(current_app.config)


def _emit_state(code: str) -> None:
    socketio.emit('state_update', {'session_code': code}, to=f"game:{code}", namespace='/ws')


def _load_session(code: str):
    play = PlaySession.query.filter_by(session_code=code.upper()).first_or_404()
    return play, play.to_game_session(_evaluator())


def _save_session(play: PlaySession, session: GameSession) -> None:
    play.apply_game_session(session)
    db.session.add(play)
    db.session.commit()
    _emit_state(play.session_code)


def _sync_game(game: Game, definition: dict, complete: bool) -> None:
    metadata = definition.get('metadata') or {}
    game.name = metadata.get('name') or game.name
    game.description = metadata.get('description') or game.description or ''
    game.min_players = metadata.get('minPlayers')
    game.max_players = metadata.get('maxPlayers')
    game.status = 'ready' if complete else 'processing'


@games.route('/create', methods=['POST'])
def create_game():
    data = request.get_json(silent=True) or {}
    definition = data.get('definition')
    if not isinstance(definition, dict):
        return jsonify({'error': 'A game definition is required'}), 400
    name = (definition.get('metadata') or {}).get('name')
    slug = _slugify(data.get('slug') or name)
    if not slug:
        return jsonify({'error': 'Game name or slug is required'}), 400
    if Game.query.filter_by(slug=slug).first():
        return jsonify({'error': f'A game with slug {slug} already exists'}), 400

    check = check_game_definition(definition)
    game = Game(slug=slug, name=name or slug)
    _sync_game(game, definition, check.is_complete)
    record = GameDefinition(game=game, version=1)
    record.document = definition
    db.session.add(game)
    db.session.add(record)
    db.session.commit()
    current_app.logger.info(f"[game-create] slug={slug} complete={check.is_complete} issues={len(check.issues)}")

    return jsonify({
        'message': 'New game created!',
        'game': game.to_dict(),
        'check': check.to_dict(),
    }), 201


@games.route('/<string:slug>/definition', methods=['GET'])
def get_definition(slug):
    game = Game.query.filter_by(slug=slug).first_or_404()
    latest = game.latest_definition
    if latest is None:
        return jsonify({'error': 'This game has no definition yet'}), 404
    return jsonify(latest.to_dict())


@games.route('/<string:slug>/validate', methods=['GET'])
def validate_definition(slug):
    game = Game.query.filter_by(slug=slug).first_or_404()
    latest = game.latest_definition
    if latest is None:
        return jsonify({'error': 'This game has no definition yet'}), 404
    payload = check_game_definition(latest.document).to_dict()
    payload['version'] = latest.version
    return jsonify(payload)


@games.route('/<string:slug>/complete', methods=['POST'])
def complete_definition(slug):
    """Apply answers to definition issues and store them as a new version."""
    data = request.get_json(silent=True) or {}
    corrections = data.get('corrections')
    if not isinstance(corrections, dict) or not corrections:
        return jsonify({'error': 'Corrections are required'}), 400

    game = Game.query.filter_by(slug=slug).first_or_404()
    latest = game.latest_definition
    if latest is None:
        return jsonify({'error': 'This game has no definition yet'}), 404
    try:
        updated = apply_corrections(latest.document, corrections)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    check = check_game_definition(updated)
    record = GameDefinition(game=game, version=latest.version + 1)
    record.document = updated
    _sync_game(game, updated, check.is_complete)
    db.session.add(record)
    db.session.add(game)
    db.session.commit()
    current_app.logger.info(f"[game-complete] slug={slug} version={record.version} remaining={len(check.issues)}")

    payload = record.to_dict()
    payload['check'] = check.to_dict()
    return jsonify(payload)


@games.route('/<string:slug>/formulas/check', methods=['POST'])
def check_formulas(slug):
    data = request.get_json(silent=True) or {}
    game = Game.query.filter_by(slug=slug).first_or_404()
    formulas = data.get('formulas')
    if formulas is None:
        latest = game.latest_definition
        formulas = ((latest.document if latest else {}).get('scoring') or {}).get('formulas') or []
    if not isinstance(formulas, list):
        return jsonify({'error': 'Formulas must be a list'}), 400

    timeout_ms = int(current_app.config.get('FORMULA_VALIDATION_TIMEOUT_MS', 100))
    sample_data = data.get('sample_data')
    results = []
    for formula in formulas:
        if not isinstance(formula, dict):
            return jsonify({'error': 'Each formula must be an object'}), 400
        entry = {'id': formula.get('id')}
        entry.update(validate_formula(formula, timeout_ms=timeout_ms).to_dict())
        if isinstance(sample_data, dict):
            entry['preview'] = preview_formula(formula, sample_data, _evaluator())
        results.append(entry)
    return jsonify({'formulas': results})


@games.route('/<string:slug>/sessions', methods=['POST'])
def create_session(slug):
    game = Game.query.filter_by(slug=slug).first_or_404()
    latest = game.latest_definition
    if latest is None:
        return jsonify({'error': 'This game has no definition yet'}), 400
    if game.status != 'ready':
        return jsonify({'error': 'This game definition is incomplete'}), 400

    play = PlaySession(
        code_length=int(current_app.config.get('SESSION_CODE_LENGTH', 4)),
        game=game,
        definition=latest,
    )
    db.session.add(play)
    db.session.commit()
    current_app.logger.info(f"[session-create] game={slug} code={play.session_code}")
    return jsonify({
        'message': 'New session created!',
        'session_code': play.session_code,
        'session': play.to_dict(),
    }), 201


@games.route('/sessions/<string:code>/join', methods=['POST'])
def join_session(code):
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Player name is required'}), 400

    play, session = _load_session(code)
    if play.status != 'setup':
        return jsonify({'error': 'This game has already started'}), 403
    try:
        # provisional id; the row id becomes the player id
        session.add_player(name, player_id=f"pending:{len(session.players)}")
    except SessionError as exc:
        return jsonify({'error': str(exc)}), 400

    player = Player(name=name, session=play)
    db.session.add(player)
    db.session.commit()
    _emit_state(play.session_code)
    return jsonify(player.to_dict()), 201


@games.route('/sessions/<string:code>/start', methods=['POST'])
def start_session(code):
    play, session = _load_session(code)
    try:
        session.start(min_players=int(current_app.config.get('MIN_PLAYERS', 2)))
    except SessionError as exc:
        return jsonify({'error': str(exc)}), 400
    _save_session(play, session)
    return jsonify(play.to_dict())


@games.route('/sessions/<string:code>/rounds', methods=['POST'])
def submit_round(code):
    data = request.get_json(silent=True) or {}
    fields = data.get('fields')
    if not isinstance(fields, dict):
        return jsonify({'error': 'Round fields are required'}), 400

    play, session = _load_session(code)
    try:
        outcome = session.submit_round(fields)
    except SessionError as exc:
        return jsonify({'error': str(exc)}), 400

    if not outcome.accepted:
        current_app.logger.info(f"[round-rejected] code={play.session_code} round={session.current_round} "
                                f"fields={outcome.validation.fields()}")
        payload = outcome.validation.to_dict()
        payload['error'] = 'Round data is invalid'
        return jsonify(payload), 400

    _save_session(play, session)
    if session.status == COMPLETED:
        socketio.emit('game_complete', session.result.to_dict(), to=f"game:{play.session_code}", namespace='/ws')

    return jsonify({
        'outcome': outcome.to_dict(),
        'session': play.to_dict(),
    }), 201


@games.route('/sessions/<string:code>/state', methods=['GET'])
def get_session_state(code):
    play = PlaySession.query.filter_by(session_code=code.upper()).first_or_404()
    return jsonify(play.to_dict())


@games.route('/sessions/<string:code>/audit', methods=['GET'])
def audit_session(code):
    _, session = _load_session(code)
    return jsonify(session.audit().to_dict())


@games.route('/sessions/<string:code>/reset', methods=['POST'])
def reset_session(code):
    play, session = _load_session(code)
    if play.status == 'setup':
        return jsonify({'error': 'Game has not started'}), 400
    try:
        session.reset()
    except SessionError as exc:
        return jsonify({'error': str(exc)}), 400
    _save_session(play, session)
    current_app.logger.info(f"[session-reset] code={play.session_code}")
    return jsonify(play.to_dict())
