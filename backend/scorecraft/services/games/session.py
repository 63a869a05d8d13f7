"""Play-loop controller for one session of a defined game.

``GameSession`` owns the mutable session state (players, round history,
running totals) and drives each submitted round through
validate -> score -> win check. The engine functions it calls are pure; only
this class advances the round counter and updates totals.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .context import EvaluationContext
from .expression import ExpressionEvaluator, default_evaluator, is_number
from .scoring import ScoringResult, calculate_final_scores, calculate_round_scores
from .validation import ValidationResult, coerce_round_data, validate_game_session, validate_round_data
from .win_conditions import (
    FIRST_TO_TARGET,
    Standing,
    WinCheckResult,
    check_win_condition,
    get_current_leader,
    get_target_progress,
)

logger = logging.getLogger(__name__)

SETUP = 'setup'
IN_PROGRESS = 'in-progress'
COMPLETED = 'completed'

DEFAULT_MIN_PLAYERS = 2


class SessionError(Exception):
    """An action that is not allowed in the session's current state."""


@dataclass
class RoundOutcome:
    accepted: bool
    validation: ValidationResult
    scoring: Optional[ScoringResult] = None
    win: Optional[WinCheckResult] = None
    final: Optional[ScoringResult] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'accepted': self.accepted,
            'validation': self.validation.to_dict(),
        }
        if self.scoring is not None:
            payload['scoring'] = self.scoring.to_dict()
        if self.win is not None:
            payload['win'] = self.win.to_dict()
        if self.final is not None:
            payload['final'] = self.final.to_dict()
        return payload


@dataclass
class GameSession:
    definition: Dict[str, Any]
    players: List[Dict[str, str]] = field(default_factory=list)
    current_round: int = 1
    rounds: List[Dict[str, Any]] = field(default_factory=list)
    total_scores: Dict[str, Any] = field(default_factory=dict)
    status: str = SETUP
    result: Optional[WinCheckResult] = None
    evaluator: ExpressionEvaluator = field(default=default_evaluator, repr=False, compare=False)

    # ---- Derived state ----

    @property
    def player_ids(self) -> List[str]:
        return [p['id'] for p in self.players]

    @property
    def player_names(self) -> Dict[str, str]:
        return {p['id']: p['name'] for p in self.players}

    @property
    def metadata(self) -> Mapping[str, Any]:
        return self.definition.get('metadata') or {}

    @property
    def total_rounds(self) -> Optional[int]:
        rounds = self.definition.get('rounds') or {}
        if rounds.get('type') == 'fixed' and is_number(rounds.get('count')):
            return rounds['count']
        return None

    def context(self, round_data: Optional[Mapping[str, Any]] = None) -> EvaluationContext:
        """A fresh evaluation context over the current state."""
        return EvaluationContext(
            current_round=self.current_round,
            total_rounds=self.total_rounds,
            round_data=dict(round_data or {}),
            all_rounds=list(self.rounds),
            player_ids=self.player_ids,
            total_scores=dict(self.total_scores),
            player_names=self.player_names,
        )

    def _last_round_fields(self) -> Dict[str, Any]:
        return dict(self.rounds[-1]['fields']) if self.rounds else {}

    # ---- Setup ----

    def add_player(self, name: str, player_id: Optional[str] = None) -> Dict[str, str]:
        if self.status != SETUP:
            raise SessionError('Players can only join before the game starts')
        name = (name or '').strip()
        if not name:
            raise SessionError('Player name is required')
        if any(p['name'].lower() == name.lower() for p in self.players):
            raise SessionError(f"A player named {name} already joined")
        max_players = self.metadata.get('maxPlayers')
        if is_number(max_players) and len(self.players) >= max_players:
            raise SessionError(f"This game allows at most {max_players} players")

        if player_id is None:
            index = len(self.players) + 1
            while f"player_{index}" in self.player_ids:
                index += 1
            player_id = f"player_{index}"
        player_id = str(player_id)
        if player_id in self.player_ids:
            raise SessionError(f"Player id {player_id} is already taken")

        player = {'id': player_id, 'name': name}
        self.players.append(player)
        self.total_scores[player_id] = 0
        return player

    def remove_player(self, player_id: str) -> None:
        if self.status != SETUP:
            raise SessionError('Players can only leave before the game starts')
        player_id = str(player_id)
        if player_id not in self.player_ids:
            raise SessionError(f"Unknown player {player_id}")
        self.players = [p for p in self.players if p['id'] != player_id]
        self.total_scores.pop(player_id, None)

    def start(self, min_players: Optional[int] = None) -> None:
        if self.status == IN_PROGRESS:
            return
        if self.status != SETUP:
            raise SessionError('Game has already finished')
        required = self.metadata.get('minPlayers')
        if not is_number(required):
            required = min_players if min_players is not None else DEFAULT_MIN_PLAYERS
        if len(self.players) < required:
            raise SessionError(f"At least {required} players are required to start")
        self.status = IN_PROGRESS
        self.current_round = 1
        self.total_scores = {pid: 0 for pid in self.player_ids}
        logger.info(f"[session-start] players={self.player_ids}")

    # ---- Play loop ----

    def submit_round(self, round_data: Mapping[str, Any]) -> RoundOutcome:
        """Validate, score and record one round, then check for a winner.

        A round that fails validation is not recorded and leaves the totals
        untouched; the outcome carries the validation issues.
        """
        if self.status != IN_PROGRESS:
            raise SessionError('Rounds can only be submitted while the game is in progress')

        validation = validate_round_data(self.definition, round_data, self.context(round_data), self.evaluator)
        if not validation.is_valid:
            return RoundOutcome(False, validation)

        fields = coerce_round_data(self.definition, round_data)
        scoring = calculate_round_scores(self.definition, self.context(fields), self.evaluator)
        self.rounds.append({
            'roundNumber': self.current_round,
            'fields': fields,
            'roundScores': dict(scoring.scores),
        })
        self.total_scores = dict(scoring.updated_totals)
        logger.info(f"[round-scored] round={self.current_round} scores={scoring.scores} totals={self.total_scores}")
        self.current_round += 1

        win = check_win_condition(self.definition, self.context(fields), self.evaluator)
        final = None
        if win.is_complete:
            win, final = self._finish(win, fields)
        return RoundOutcome(True, validation, scoring, win, final)

    def _finish(self, win: WinCheckResult, fields) -> tuple:
        """Apply final-scope formulas once and settle the standings on the adjusted totals."""
        final = calculate_final_scores(self.definition, self.context(fields), self.evaluator)
        self.total_scores = dict(final.updated_totals)
        standings = check_win_condition(self.definition, self.context(fields), self.evaluator)
        if not standings.is_complete:
            # Adjustments can undo what ended the game; the ending itself stands.
            standings = win
        self.status = COMPLETED
        self.result = standings
        logger.info(f"[session-complete] round={self.current_round - 1} winners={standings.player_ids()} totals={self.total_scores}")
        return standings, final

    def check_win(self) -> WinCheckResult:
        if self.result is not None:
            return self.result
        return check_win_condition(self.definition, self.context(self._last_round_fields()), self.evaluator)

    def reset(self) -> None:
        """Clear rounds and scores and play again with the same players."""
        if not self.players:
            raise SessionError('No players in game')
        self.rounds = []
        self.current_round = 1
        self.total_scores = {pid: 0 for pid in self.player_ids}
        self.status = IN_PROGRESS
        self.result = None

    # ---- Queries ----

    def audit(self) -> ValidationResult:
        return validate_game_session(self.definition, self.rounds, self.context(), self.evaluator)

    def leader(self) -> Optional[Dict[str, Any]]:
        return get_current_leader(self.total_scores, self.player_ids)

    def target_progress(self) -> Optional[Dict[str, Any]]:
        win_condition = self.definition.get('winCondition') or {}
        if win_condition.get('type') != FIRST_TO_TARGET:
            return None
        return get_target_progress(self.total_scores, win_condition.get('targetScore'))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'players': [dict(p) for p in self.players],
            'status': self.status,
            'currentRound': self.current_round,
            'totalRounds': self.total_rounds,
            'rounds': list(self.rounds),
            'totalScores': dict(self.total_scores),
            'leader': self.leader(),
            'targetProgress': self.target_progress(),
        }
        if self.result is not None:
            payload['result'] = self.result.to_dict()
        return payload

    @classmethod
    def from_dict(cls, definition: Dict[str, Any], data: Mapping[str, Any],
                  evaluator: Optional[ExpressionEvaluator] = None) -> 'GameSession':
        """Restore a session from the shape ``to_dict`` produces."""
        session = cls(
            definition=definition,
            players=[{'id': str(p['id']), 'name': p['name']} for p in data.get('players') or []],
            current_round=int(data.get('currentRound') or 1),
            rounds=list(data.get('rounds') or []),
            total_scores=dict(data.get('totalScores') or {}),
            status=data.get('status') or SETUP,
            evaluator=evaluator or default_evaluator,
        )
        session.result = result_from_dict(data.get('result'))
        return session


def result_from_dict(data: Optional[Mapping[str, Any]]) -> Optional[WinCheckResult]:
    if not data:
        return None
    winner = data.get('winner')
    return WinCheckResult(
        is_complete=bool(data.get('isComplete')),
        winner=Standing(str(winner['playerId']), winner['score'], winner.get('reason')) if winner else None,
        winners=[Standing(str(w['playerId']), w['score'], w.get('reason')) for w in data.get('winners') or []],
        reason=data.get('reason'),
    )
