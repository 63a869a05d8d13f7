from scorecraft import db
from scorecraft.services.games.expression import normalize_number
from scorecraft.services.games.session import GameSession, result_from_dict
from datetime import datetime, timezone
import json
import string
import random


def _utcnow():
    return datetime.now(timezone.utc)


def _loads(text, default):
    try:
        return json.loads(text) if text else default
    except ValueError:
        return default


class Game(db.Model):
    """A defined game (e.g. Skull King) that sessions can be played from."""
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    min_players = db.Column(db.Integer, nullable=True)
    max_players = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(32), default='processing')  # processing, ready, failed
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    definitions = db.relationship('GameDefinition', back_populates='game', lazy='dynamic',
                                  order_by='GameDefinition.version', cascade='all, delete-orphan')
    sessions = db.relationship('PlaySession', back_populates='game', lazy='dynamic', cascade='all, delete-orphan')

    @property
    def latest_definition(self):
        return self.definitions.order_by(None).order_by(GameDefinition.version.desc()).first()

    def to_dict(self):
        latest = self.latest_definition
        return {
            'id': self.id,
            'slug': self.slug,
            'name': self.name,
            'description': self.description,
            'min_players': self.min_players,
            'max_players': self.max_players,
            'status': self.status,
            'version': latest.version if latest else None,
        }


class GameDefinition(db.Model):
    __tablename__ = 'game_definition'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    definition = db.Column(db.Text, nullable=False)  # JSON-encoded definition document
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    game = db.relationship('Game', back_populates='definitions')

    @property
    def document(self):
        return _loads(self.definition, {})

    @document.setter
    def document(self, value):
        self.definition = json.dumps(value)

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'version': self.version,
            'definition': self.document,
        }


def generate_session_code(length=4):
    """Generate a unique, short session code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not PlaySession.query.filter_by(session_code=code).first():
            return code


class PlaySession(db.Model):
    __tablename__ = 'play_session'
    id = db.Column(db.Integer, primary_key=True)
    session_code = db.Column(db.String(8), unique=True, index=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    definition_id = db.Column(db.Integer, db.ForeignKey('game_definition.id'), nullable=False)
    status = db.Column(db.String(32), default='setup')  # setup, in-progress, completed
    current_round = db.Column(db.Integer, default=1, nullable=False)
    result = db.Column(db.Text, nullable=True)  # JSON-encoded win check result once completed
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    game = db.relationship('Game', back_populates='sessions')
    definition = db.relationship('GameDefinition')
    players = db.relationship('Player', back_populates='session', order_by='Player.id', cascade='all, delete-orphan')
    rounds = db.relationship('Round', back_populates='session', order_by='Round.round_number',
                             cascade='all, delete-orphan')

    def __init__(self, code_length=4, **kwargs):
        super(PlaySession, self).__init__(**kwargs)
        if not self.session_code:
            self.session_code = generate_session_code(code_length)

    def to_game_session(self, evaluator=None) -> GameSession:
        """Load this row into the play-loop controller."""
        kwargs = {'evaluator': evaluator} if evaluator is not None else {}
        return GameSession(
            definition=self.definition.document,
            players=[{'id': str(p.id), 'name': p.name} for p in self.players],
            current_round=self.current_round or 1,
            rounds=[r.to_dict() for r in self.rounds],
            total_scores={str(p.id): normalize_number(p.score or 0) for p in self.players},
            status=self.status or 'setup',
            result=result_from_dict(_loads(self.result, None)),
            **kwargs,
        )

    def apply_game_session(self, session: GameSession) -> None:
        """Write controller state back onto this row and its children."""
        self.status = session.status
        self.current_round = session.current_round
        self.result = json.dumps(session.result.to_dict()) if session.result is not None else None
        for player in self.players:
            player.score = session.total_scores.get(str(player.id), 0)
        recorded = len(self.rounds)
        if len(session.rounds) < recorded:
            # reset: history was cleared
            self.rounds = []
            recorded = 0
        for entry in session.rounds[recorded:]:
            self.rounds.append(Round(
                round_number=entry['roundNumber'],
                fields=json.dumps(entry['fields']),
                round_scores=json.dumps(entry.get('roundScores') or {}),
            ))

    def to_dict(self):
        state = self.to_game_session().to_dict()
        state.update({
            'id': self.id,
            'session_code': self.session_code,
            'game_slug': self.game.slug if self.game else None,
            'definition_version': self.definition.version if self.definition else None,
        })
        return state


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey('play_session.id'), nullable=False)
    score = db.Column(db.Float, default=0)
    session = db.relationship('PlaySession', back_populates='players')

    def to_dict(self):
        return {
            'id': str(self.id),
            'name': self.name,
            'session_id': self.session_id,
            'score': normalize_number(self.score or 0),
        }


class Round(db.Model):
    __tablename__ = 'round'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('play_session.id'), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    fields = db.Column(db.Text, nullable=False)  # JSON-encoded field values
    round_scores = db.Column(db.Text, nullable=True)  # JSON-encoded playerId -> score
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    session = db.relationship('PlaySession', back_populates='rounds')

    def to_dict(self):
        return {
            'roundNumber': self.round_number,
            'fields': _loads(self.fields, {}),
            'roundScores': _loads(self.round_scores, {}),
        }
