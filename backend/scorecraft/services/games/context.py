"""Evaluation contexts and the variable bindings built from them.

An ``EvaluationContext`` is the game state handed to the engine for one call.
``build_context`` turns it into the flat name -> value mapping expressions are
evaluated against.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .expression import normalize_number, to_number


@dataclass
class EvaluationContext:
    current_round: int
    player_ids: List[str]
    round_data: Dict[str, Any] = field(default_factory=dict)
    total_scores: Dict[str, Any] = field(default_factory=dict)
    all_rounds: List[Dict[str, Any]] = field(default_factory=list)
    total_rounds: Optional[int] = None
    player_names: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Work on copies; the caller keeps ownership of what it passed in.
        self.player_ids = [str(pid) for pid in self.player_ids]
        scores = {str(pid): score for pid, score in (self.total_scores or {}).items()}
        for pid in self.player_ids:
            scores.setdefault(pid, 0)
        self.total_scores = scores
        self.round_data = dict(self.round_data or {})
        self.all_rounds = list(self.all_rounds or [])
        self.player_names = {str(pid): name for pid, name in (self.player_names or {}).items()}

    def player_name(self, player_id: str) -> str:
        if player_id in self.player_names:
            return self.player_names[player_id]
        if player_id in self.player_ids:
            return f"Player {self.player_ids.index(player_id) + 1}"
        return player_id

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'EvaluationContext':
        return cls(
            current_round=int(data.get('currentRound') or 1),
            total_rounds=data.get('totalRounds'),
            round_data=data.get('roundData') or {},
            all_rounds=data.get('allRounds') or [],
            player_ids=data.get('playerIds') or [],
            total_scores=data.get('totalScores') or {},
            player_names=data.get('playerNames') or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'currentRound': self.current_round,
            'totalRounds': self.total_rounds,
            'roundData': self.round_data,
            'allRounds': self.all_rounds,
            'playerIds': list(self.player_ids),
            'totalScores': dict(self.total_scores),
        }


# ---- Field values ----

@dataclass(frozen=True)
class GlobalValue:
    """A round value shared by the whole table."""

    value: Any


@dataclass(frozen=True)
class PerPlayerValue:
    """A round value tracked separately for each player."""

    values: Dict[str, Any]

    def get(self, player_id: str, default=None):
        return self.values.get(player_id, default)


def field_value(raw, field_def: Optional[Mapping[str, Any]] = None):
    """Classify a submitted value as GlobalValue or PerPlayerValue.

    Declared fields are discriminated by their ``perPlayer`` flag. Keys the
    definition does not declare fall back to the shape of the value.
    """
    if field_def is not None and not field_def.get('perPlayer'):
        return GlobalValue(raw)
    if isinstance(raw, Mapping):
        return PerPlayerValue({str(pid): value for pid, value in raw.items()})
    if field_def is not None and raw is None:
        return PerPlayerValue({})
    return GlobalValue(raw)


# ---- Aggregate helpers ----

def _values(obj) -> list:
    if isinstance(obj, Mapping):
        return list(obj.values())
    if isinstance(obj, (list, tuple)):
        return list(obj)
    return [obj]


def _as_addend(value):
    number = to_number(value)
    return 0 if not math.isfinite(number) else number


def _total(values):
    total = 0
    for value in values:
        total = to_number(total + _as_addend(value))
    return total


def sum_values(obj):
    return normalize_number(_total(_values(obj)))


def count_values(obj) -> int:
    if isinstance(obj, (Mapping, list, tuple)):
        return len(obj)
    return 0


def avg_values(obj):
    values = _values(obj) if isinstance(obj, (Mapping, list, tuple)) else []
    if not values:
        return 0
    return normalize_number(_total(values) / len(values))


AGGREGATE_HELPERS = {
    'sum': sum_values,
    'count': count_values,
    'avg': avg_values,
}


def _fields_by_id(fields) -> Dict[str, Mapping[str, Any]]:
    return {f.get('id'): f for f in (fields or []) if isinstance(f, Mapping)}


def build_context(ctx: EvaluationContext, player_id: Optional[str] = None, fields=None) -> Dict[str, Any]:
    """Bindings for formulas and rules.

    With ``player_id`` each per-player field binds that player's value
    (missing -> 0). Without one, per-player fields bind the whole mapping along
    with ``<id>_sum``, ``<id>_count`` and ``<id>_<playerId>`` aliases for
    round-level rules. The full mapping is always available as ``<id>_all``.
    """
    declared = _fields_by_id(fields)
    bindings: Dict[str, Any] = {
        'currentRound': ctx.current_round,
        'totalRounds': ctx.total_rounds,
        'playerIds': list(ctx.player_ids),
    }
    bindings.update(AGGREGATE_HELPERS)

    for field_id, raw in ctx.round_data.items():
        value = field_value(raw, declared.get(field_id))
        if isinstance(value, PerPlayerValue):
            bindings[f"{field_id}_all"] = dict(value.values)
            if player_id is not None:
                player_value = value.get(player_id)
                bindings[field_id] = 0 if player_value is None else player_value
            else:
                bindings[field_id] = dict(value.values)
                bindings[f"{field_id}_sum"] = sum_values(value.values)
                bindings[f"{field_id}_count"] = len(value.values)
                for pid, player_value in value.values.items():
                    bindings[f"{field_id}_{pid}"] = player_value
        else:
            bindings[field_id] = 0 if value.value is None else value.value

    if player_id is not None:
        bindings['playerId'] = player_id
        bindings['currentPlayerId'] = player_id
        bindings['totalScore'] = ctx.total_scores.get(player_id, 0)
    return bindings


def build_win_context(ctx: EvaluationContext, fields=None) -> Dict[str, Any]:
    """Bindings for custom win conditions: the round-level context plus scores."""
    bindings = build_context(ctx, fields=fields)
    scores = dict(ctx.total_scores)
    numeric = [_as_addend(s) for s in scores.values()]
    max_score = max(numeric) if numeric else 0
    min_score = min(numeric) if numeric else 0

    bindings['scores'] = scores
    bindings['maxScore'] = max_score
    bindings['minScore'] = min_score
    for index, pid in enumerate(ctx.player_ids):
        bindings[f"player{index + 1}_score"] = scores.get(pid, 0)
        bindings[f"player_{pid}_score"] = scores.get(pid, 0)
    bindings['getPlayerScore'] = lambda pid=None: scores.get(str(pid), 0)
    bindings['getMaxScore'] = lambda: max_score
    bindings['getMinScore'] = lambda: min_score
    return bindings
