"""Win-condition resolution.

``check_win_condition`` is a pure function of the definition and the current
context: it is recomputed on every call and keeps no state between calls.
Misconfigured definitions never produce a winner; they report the game as
incomplete with a reason explaining what is missing.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .context import EvaluationContext, build_win_context
from .expression import BOOLEAN, ExpressionEvaluator, default_evaluator, is_number, normalize_number

logger = logging.getLogger(__name__)

HIGHEST_SCORE = 'highest-score'
LOWEST_SCORE = 'lowest-score'
FIRST_TO_TARGET = 'first-to-target'
CUSTOM = 'custom'

WIN_CONDITION_TYPES = (HIGHEST_SCORE, LOWEST_SCORE, FIRST_TO_TARGET, CUSTOM)
OPEN_ENDED_ROUND_TYPES = ('variable', 'infinite')


@dataclass(frozen=True)
class Standing:
    player_id: str
    score: Any
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {'playerId': self.player_id, 'score': self.score}
        if self.reason is not None:
            payload['reason'] = self.reason
        return payload


@dataclass(frozen=True)
class WinCheckResult:
    is_complete: bool
    winner: Optional[Standing] = None
    winners: List[Standing] = field(default_factory=list)
    reason: Optional[str] = None

    def player_ids(self) -> List[str]:
        if self.winner is not None:
            return [self.winner.player_id]
        return [w.player_id for w in self.winners]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'isComplete': self.is_complete}
        if self.winner is not None:
            payload['winner'] = self.winner.to_dict()
        if self.winners:
            payload['winners'] = [w.to_dict() for w in self.winners]
        if self.reason is not None:
            payload['reason'] = self.reason
        return payload


def _ordered_scores(scores: Mapping[str, Any], player_ids) -> List[tuple]:
    """Score entries in seating order, then any extra ids in insertion order."""
    ordered = [(pid, scores[pid]) for pid in player_ids if pid in scores]
    seen = {pid for pid, _ in ordered}
    ordered.extend((pid, score) for pid, score in scores.items() if pid not in seen)
    return [(pid, score) for pid, score in ordered if is_number(score)]


def find_extremal(scores: Mapping[str, Any], player_ids=(), lowest: bool = False) -> List[Standing]:
    entries = _ordered_scores(scores, player_ids)
    if not entries:
        return []
    pick = min if lowest else max
    best = pick(score for _, score in entries)
    return [Standing(pid, normalize_number(score)) for pid, score in entries if score == best]


def _resolve_extremal(scores, player_ids, lowest: bool, single_reason: str, empty_reason: str) -> WinCheckResult:
    leaders = find_extremal(scores, player_ids, lowest=lowest)
    if len(leaders) == 1:
        only = leaders[0]
        return WinCheckResult(True, winner=Standing(only.player_id, only.score, single_reason))
    if leaders:
        return WinCheckResult(True, winners=leaders)
    return WinCheckResult(True, reason=empty_reason)


def rounds_complete(definition: Mapping[str, Any], ctx: EvaluationContext) -> bool:
    """Fixed-round games end once the round after the last one is reached."""
    rounds = definition.get('rounds') or {}
    if rounds.get('type') != 'fixed':
        return False
    count = rounds.get('count')
    if not is_number(count):
        count = ctx.total_rounds
    if not is_number(count):
        return False
    return ctx.current_round > count


def _custom_met(expression: str, definition, ctx, evaluator) -> bool:
    fields = (definition.get('rounds') or {}).get('fields') or []
    bindings = build_win_context(ctx, fields)
    return evaluator.evaluate(expression, bindings, BOOLEAN).value


def _check_extremal_policy(win_condition, definition, ctx, evaluator, lowest: bool) -> WinCheckResult:
    round_type = (definition.get('rounds') or {}).get('type')
    gate = win_condition.get('customExpression')
    if round_type in OPEN_ENDED_ROUND_TYPES:
        if not gate:
            logger.warning(f"[win-config] {win_condition.get('type')} with {round_type} rounds has no customExpression")
            return WinCheckResult(False, reason=f"{round_type.capitalize()} rounds need a customExpression to end a {win_condition.get('type')} game")
        if not _custom_met(gate, definition, ctx, evaluator):
            return WinCheckResult(False, reason='Game not yet complete')
    elif not rounds_complete(definition, ctx):
        return WinCheckResult(False, reason='Game not yet complete')

    single_reason = 'Lowest score' if lowest else 'Highest score'
    return _resolve_extremal(ctx.total_scores, ctx.player_ids, lowest, single_reason, 'No valid scores')


def _check_first_to_target(win_condition, definition, ctx) -> WinCheckResult:
    target = win_condition.get('targetScore')
    if not is_number(target):
        logger.error('[win-config] first-to-target win condition requires targetScore')
        return WinCheckResult(False, reason='Invalid win condition configuration: targetScore is required')

    target = normalize_number(target)
    for player_id, score in _ordered_scores(ctx.total_scores, ctx.player_ids):
        if score >= target:
            return WinCheckResult(True, winner=Standing(player_id, normalize_number(score), f"First to reach {target} points"))

    if rounds_complete(definition, ctx):
        return _resolve_extremal(ctx.total_scores, ctx.player_ids, False,
                                 f"Highest score (target {target} not reached)", 'No valid scores')
    return WinCheckResult(False, reason=f"Target score {target} not yet reached")


def _check_custom(win_condition, definition, ctx, evaluator) -> WinCheckResult:
    expression = win_condition.get('customExpression')
    if not expression:
        logger.error('[win-config] custom win condition requires customExpression')
        return WinCheckResult(False, reason='Invalid win condition configuration: customExpression is required')
    if not _custom_met(expression, definition, ctx, evaluator):
        return WinCheckResult(False, reason='Custom win condition not yet met')
    reason = win_condition.get('description') or 'Custom win condition met'
    return _resolve_extremal(ctx.total_scores, ctx.player_ids, False, reason, 'Custom win condition met')


def check_win_condition(definition: Mapping[str, Any], ctx: EvaluationContext,
                        evaluator: Optional[ExpressionEvaluator] = None) -> WinCheckResult:
    evaluator = evaluator or default_evaluator
    win_condition = definition.get('winCondition') or {}
    kind = win_condition.get('type')

    if kind == HIGHEST_SCORE:
        return _check_extremal_policy(win_condition, definition, ctx, evaluator, lowest=False)
    if kind == LOWEST_SCORE:
        return _check_extremal_policy(win_condition, definition, ctx, evaluator, lowest=True)
    if kind == FIRST_TO_TARGET:
        return _check_first_to_target(win_condition, definition, ctx)
    if kind == CUSTOM:
        return _check_custom(win_condition, definition, ctx, evaluator)

    logger.error(f"[win-config] unknown win condition type {kind!r}")
    return WinCheckResult(False, reason=f"Unknown win condition type: {kind}")


def has_player_won(definition: Mapping[str, Any], ctx: EvaluationContext, player_id: str,
                   evaluator: Optional[ExpressionEvaluator] = None) -> bool:
    result = check_win_condition(definition, ctx, evaluator)
    return result.is_complete and str(player_id) in result.player_ids()


def get_current_leader(scores: Mapping[str, Any], player_ids=()) -> Optional[Dict[str, Any]]:
    """Who is ahead right now, regardless of the win condition."""
    leaders = find_extremal(scores, player_ids)
    if not leaders:
        return None
    return {'playerId': leaders[0].player_id, 'score': leaders[0].score, 'tied': len(leaders) > 1}


def get_target_progress(scores: Mapping[str, Any], target_score) -> Dict[str, Any]:
    """Percentage of the target reached per player, capped at 100."""
    progress = {}
    for player_id, score in scores.items():
        if not is_number(score):
            progress[player_id] = 0
        elif not is_number(target_score) or target_score <= 0:
            progress[player_id] = 100
        else:
            progress[player_id] = normalize_number(min(100, score / target_score * 100))
    return progress
