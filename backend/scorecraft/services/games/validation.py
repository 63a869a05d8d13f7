"""Round-data validation.

Checks submitted round values against the field constraints of a game
definition and against its custom cross-field rules. Problems come back as
``ValidationIssue`` entries addressed by field id so the input layer can put
each message next to the widget it belongs to.
"""

import copy
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from .context import EvaluationContext, PerPlayerValue, build_context, field_value
from .expression import BOOLEAN, NUMBER, ExpressionEvaluator, default_evaluator, is_number, to_number, to_string

logger = logging.getLogger(__name__)

ERROR = 'error'
WARNING = 'warning'


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    severity: str = ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {'field': self.field, 'message': self.message, 'severity': self.severity}


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(issue.severity == ERROR for issue in self.errors)

    def fields(self) -> List[str]:
        return [issue.field for issue in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isValid': self.is_valid,
            'errors': [issue.to_dict() for issue in self.errors],
        }


def _is_empty(value) -> bool:
    return value is None or value == ''


def _as_number(value):
    """Numeric reading of a submitted value, or None when it isn't one."""
    if is_number(value):
        number = to_number(value)
        return None if math.isnan(number) else number
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if math.isnan(number):
            return None
        return int(number) if number.is_integer() else number
    return None


def _fmt(number) -> str:
    return to_string(number)


def _round_fields(definition: Mapping[str, Any]) -> list:
    return (definition.get('rounds') or {}).get('fields') or []


class _FieldChecker:
    """Runs the constraint checks for one field and collects messages."""

    def __init__(self, field_def, value, ctx: EvaluationContext, fields, evaluator):
        self.field = field_def
        self.rules = field_def.get('validation') or {}
        self.label = field_def.get('label') or field_def.get('id')
        self.raw = value
        self.value = field_value(value, field_def)
        self.ctx = ctx
        self.fields = fields
        self.evaluator = evaluator
        self.messages: List[str] = []

    def run(self) -> List[str]:
        if not self._check_required() or _is_empty(self.raw):
            return self.messages
        if self.field.get('perPlayer') and not isinstance(self.value, PerPlayerValue):
            self.messages.append(f"{self.label} must have a value per player")
            return self.messages
        if isinstance(self.value, PerPlayerValue) and not self._check_players():
            return self.messages
        field_type = self.field.get('type')
        if field_type == 'number':
            self._check_numbers()
        elif field_type in ('select', 'multi-select') and self.field.get('options'):
            self._check_options()
        return self.messages

    def _entries(self):
        """(player_id, value) pairs to check; player_id is None for global fields."""
        if isinstance(self.value, PerPlayerValue):
            known = [pid for pid in self.ctx.player_ids if pid in self.value.values]
            return [(pid, self.value.values[pid]) for pid in known]
        return [(None, self.value.value)]

    def _subject(self, player_id) -> str:
        if player_id is None:
            return self.label
        return f"{self.label} for {self.ctx.player_name(player_id)}"

    def _check_required(self) -> bool:
        if not self.rules.get('required'):
            return True
        if _is_empty(self.raw):
            self.messages.append(f"{self.label} is required")
            return False
        if not self.field.get('perPlayer'):
            return True
        if not isinstance(self.value, PerPlayerValue):
            self.messages.append(f"{self.label} is required for all players")
            return False
        missing = [pid for pid in self.ctx.player_ids if _is_empty(self.value.get(pid))]
        if missing:
            self.messages.append(f"{self.label} is required for all players")
            return False
        return True

    def _check_players(self) -> bool:
        if not self.ctx.player_ids:
            return True
        unknown = [pid for pid in self.value.values if pid not in self.ctx.player_ids]
        if unknown:
            self.messages.append(f"{self.label} has values for unknown players: {', '.join(unknown)}")
            return False
        return True

    def _check_numbers(self):
        minimum = self.rules.get('min')
        maximum = self.rules.get('max')
        max_expression = self.rules.get('maxExpression')

        for player_id, raw in self._entries():
            if _is_empty(raw):
                continue
            number = _as_number(raw)
            subject = self._subject(player_id)
            if number is None:
                self.messages.append(f"{subject} must be a number")
                continue
            if is_number(minimum) and number < minimum:
                self.messages.append(f"{subject} must be at least {_fmt(minimum)}")
                continue
            if is_number(maximum) and number > maximum:
                self.messages.append(f"{subject} must be at most {_fmt(maximum)}")
                continue
            if max_expression:
                bindings = build_context(self.ctx, player_id, self.fields)
                bound = self.evaluator.evaluate(max_expression, bindings, NUMBER).value
                if number > bound:
                    self.messages.append(f"{subject} cannot exceed {_fmt(bound)}")

        if isinstance(self.value, PerPlayerValue):
            self._check_sum()

    def _check_sum(self):
        total = 0
        for value in self.value.values.values():
            total = to_number(total + (_as_number(value) or 0))
        expected = self.rules.get('sum')
        if is_number(expected) and total != expected:
            self.messages.append(f"Total {self.label} must equal {_fmt(expected)} (currently {_fmt(total)})")

        sum_expression = self.rules.get('sumExpression')
        if sum_expression:
            bindings = build_context(self.ctx, fields=self.fields)
            bindings['sum'] = total
            if not self.evaluator.evaluate(sum_expression, bindings, BOOLEAN).value:
                self.messages.append(f"Total {self.label} violates constraint: {sum_expression}")

    def _check_options(self):
        options = self.field.get('options') or []
        multi = self.field.get('type') == 'multi-select'
        for _, raw in self._entries():
            if _is_empty(raw):
                continue
            if multi and isinstance(raw, (list, tuple)):
                invalid = [to_string(o) for o in raw if o not in options]
                if invalid:
                    self.messages.append(f"Invalid options: {', '.join(invalid)}")
            elif raw not in options:
                self.messages.append(f"{to_string(raw)} is not a valid option")


def validate_field(field_def: Mapping[str, Any], value, ctx: EvaluationContext,
                   evaluator: Optional[ExpressionEvaluator] = None, fields=None) -> List[str]:
    """Messages for a single field value; empty when the value passes."""
    return _FieldChecker(field_def, value, ctx, fields or [field_def], evaluator or default_evaluator).run()


def is_field_valid(field_def, value, ctx: EvaluationContext) -> bool:
    return not validate_field(field_def, value, ctx)


def get_field_error(field_def, value, ctx: EvaluationContext) -> Optional[str]:
    messages = validate_field(field_def, value, ctx)
    return messages[0] if messages else None


def validate_round_data(definition: Mapping[str, Any], round_data: Mapping[str, Any], ctx: EvaluationContext,
                        evaluator: Optional[ExpressionEvaluator] = None) -> ValidationResult:
    """Validate one round's submitted values.

    Field checks run in definition order (required, numeric bounds and sums,
    option membership), then each custom rule runs once for the round.
    """
    evaluator = evaluator or default_evaluator
    fields = _round_fields(definition)
    round_ctx = replace(ctx, round_data=dict(round_data or {}))
    issues: List[ValidationIssue] = []

    for field_def in fields:
        field_id = field_def.get('id')
        value = round_ctx.round_data.get(field_id)
        for message in _FieldChecker(field_def, value, round_ctx, fields, evaluator).run():
            issues.append(ValidationIssue(field=field_id, message=message, severity=ERROR))

    rules = (definition.get('validation') or {}).get('rules') or []
    if rules:
        bindings = build_context(round_ctx, fields=fields)
        for rule in rules:
            if evaluator.evaluate(rule.get('rule'), bindings, BOOLEAN).value:
                continue
            severity = rule.get('severity') or ERROR
            message = rule.get('errorMessage') or f"Validation rule {rule.get('id')} failed"
            issues.append(ValidationIssue(field=rule.get('field') or '', message=message, severity=severity))

    if issues:
        logger.info(f"[round-invalid] round={ctx.current_round} fields={[i.field for i in issues]}")
    return ValidationResult(errors=issues)


def validate_game_session(definition: Mapping[str, Any], all_rounds, ctx: EvaluationContext,
                          evaluator: Optional[ExpressionEvaluator] = None) -> ValidationResult:
    """Re-validate every recorded round, e.g. after a correction."""
    issues: List[ValidationIssue] = []
    for index, round_entry in enumerate(all_rounds or []):
        round_data = (round_entry or {}).get('fields') or {}
        round_ctx = replace(ctx, current_round=index + 1, round_data=round_data)
        result = validate_round_data(definition, round_data, round_ctx, evaluator)
        for issue in result.errors:
            issues.append(replace(issue, message=f"Round {index + 1}: {issue.message}"))
    return ValidationResult(errors=issues)


def coerce_round_data(definition: Mapping[str, Any], round_data: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``round_data`` with numeric strings of number fields turned into numbers."""
    coerced = copy.deepcopy(dict(round_data or {}))
    for field_def in _round_fields(definition):
        if field_def.get('type') != 'number':
            continue
        field_id = field_def.get('id')
        raw = coerced.get(field_id)
        if isinstance(raw, dict):
            for pid, value in raw.items():
                if isinstance(value, str) and _as_number(value) is not None:
                    raw[pid] = _as_number(value)
        elif isinstance(raw, str) and _as_number(raw) is not None:
            coerced[field_id] = _as_number(raw)
    return coerced
