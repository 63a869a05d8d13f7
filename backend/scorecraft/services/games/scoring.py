import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .context import EvaluationContext, build_context
from .expression import (
    NUMBER,
    RAW,
    Evaluation,
    ExpressionEvaluator,
    ExpressionSyntaxError,
    compile_expression,
    default_evaluator,
    is_number,
    normalize_number,
    to_number,
    to_string,
)

logger = logging.getLogger(__name__)

FORMULA_VALIDATION_TIMEOUT_MS = 100

ROUND_SCOPES = ('per-round', 'cumulative')
FINAL_SCOPES = ('final',)


@dataclass
class ScoringResult:
    scores: Dict[str, Any]
    updated_totals: Dict[str, Any]
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'scores': dict(self.scores),
            'updatedTotals': dict(self.updated_totals),
        }
        if self.errors:
            payload['errors'] = list(self.errors)
        return payload


@dataclass(frozen=True)
class FormulaCheck:
    valid: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {'valid': self.valid}
        if self.error:
            payload['error'] = self.error
        return payload


def _formulas(definition: Mapping[str, Any], scopes) -> list:
    formulas = (definition.get('scoring') or {}).get('formulas') or []
    return [f for f in formulas if f.get('scope') in scopes]


def _round_fields(definition: Mapping[str, Any]) -> list:
    return (definition.get('rounds') or {}).get('fields') or []


def evaluate_formula(formula: Mapping[str, Any], context: EvaluationContext, player_id: str,
                     evaluator: Optional[ExpressionEvaluator] = None, fields=None) -> Evaluation:
    """Evaluate one formula for one player."""
    bindings = build_context(context, player_id, fields)
    return (evaluator or default_evaluator).evaluate(formula.get('expression'), bindings, NUMBER)


def _score_players(formulas, definition, context, evaluator, label) -> ScoringResult:
    evaluator = evaluator or default_evaluator
    fields = _round_fields(definition)
    scores: Dict[str, Any] = {}
    updated_totals = dict(context.total_scores)
    errors: List[str] = []

    for player_id in context.player_ids:
        bindings = build_context(context, player_id, fields)
        player_score = 0
        for formula in formulas:
            result = evaluator.evaluate(formula.get('expression'), bindings, NUMBER)
            if result.error:
                name = formula.get('name') or formula.get('id')
                message = f"Error calculating {label}{name} for player {player_id}: {result.error}"
                errors.append(message)
                logger.error(f"[formula-error] formula={formula.get('id')} player={player_id} error={result.error}")
            player_score = to_number(player_score + result.value)
        scores[player_id] = normalize_number(player_score)
        updated_totals[player_id] = normalize_number(to_number(updated_totals.get(player_id, 0) + player_score))

    return ScoringResult(scores=scores, updated_totals=updated_totals, errors=errors)


def calculate_round_scores(definition: Mapping[str, Any], context: EvaluationContext,
                           evaluator: Optional[ExpressionEvaluator] = None) -> ScoringResult:
    """Score the current round for every player.

    Per-round and cumulative formulas are summed per player. A failing formula
    contributes 0 and leaves a message in ``errors``; the rest still count.
    """
    formulas = _formulas(definition, ROUND_SCOPES)
    return _score_players(formulas, definition, context, evaluator, '')


def calculate_final_scores(definition: Mapping[str, Any], context: EvaluationContext,
                           evaluator: Optional[ExpressionEvaluator] = None) -> ScoringResult:
    """Apply final-scope formulas as adjustments on top of the current totals."""
    formulas = _formulas(definition, FINAL_SCOPES)
    if not formulas:
        return ScoringResult(scores=dict(context.total_scores), updated_totals=dict(context.total_scores))

    result = _score_players(formulas, definition, context, evaluator, 'final ')
    return ScoringResult(scores=dict(result.updated_totals), updated_totals=result.updated_totals, errors=result.errors)


def validate_formula(formula: Mapping[str, Any], timeout_ms: int = FORMULA_VALIDATION_TIMEOUT_MS) -> FormulaCheck:
    """Sanity-check a formula with every declared variable set to 0."""
    expression = formula.get('expression')
    if not isinstance(expression, str) or not expression.strip():
        return FormulaCheck(False, 'Formula expression is empty')
    try:
        compile_expression(expression)
    except ExpressionSyntaxError as exc:
        return FormulaCheck(False, f"Syntax error: {exc}")
    except RecursionError:
        return FormulaCheck(False, 'Expression is nested too deeply')

    test_context = build_context(EvaluationContext(current_round=1, total_rounds=10, player_ids=[]))
    test_context['totalScore'] = 0
    for name in formula.get('variables') or []:
        test_context[name] = 0

    result = default_evaluator.with_timeout(timeout_ms).evaluate(expression, test_context, RAW)
    if result.error:
        return FormulaCheck(False, result.error)
    if not is_number(result.value):
        return FormulaCheck(False, f"Formula must return a number (got {to_string(result.value)})")
    return FormulaCheck(True)


def preview_formula(formula: Mapping[str, Any], sample_data: Mapping[str, Any],
                    evaluator: Optional[ExpressionEvaluator] = None) -> Dict[str, Any]:
    """Evaluate a formula against hand-written sample bindings."""
    bindings = build_context(EvaluationContext(current_round=1, player_ids=[]))
    bindings.update(sample_data or {})
    result = (evaluator or default_evaluator).evaluate(formula.get('expression'), bindings, NUMBER)
    payload = {'result': result.value}
    if result.error:
        payload['error'] = result.error
    return payload
