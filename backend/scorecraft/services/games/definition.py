"""Completeness checks for game definitions.

Generated definitions often arrive with gaps (no round count, no target
score). ``check_game_definition`` lists each gap as an issue with a question
the authoring UI can put to the user; ``apply_corrections`` writes the
answers back.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .expression import is_number
from .scoring import validate_formula
from .win_conditions import CUSTOM, FIRST_TO_TARGET, HIGHEST_SCORE, LOWEST_SCORE, OPEN_ENDED_ROUND_TYPES, WIN_CONDITION_TYPES

FIELD_TYPES = ('number', 'boolean', 'select', 'multi-select', 'text')
ROUND_TYPES = ('fixed', 'variable', 'infinite')
FORMULA_SCOPES = ('per-round', 'cumulative', 'final')


@dataclass
class DefinitionIssue:
    field: str
    issue: str
    question: str
    type: str = 'text'
    options: Optional[List[str]] = None
    default_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'field': self.field,
            'issue': self.issue,
            'question': self.question,
            'type': self.type,
        }
        if self.options is not None:
            payload['options'] = list(self.options)
        if self.default_value is not None:
            payload['defaultValue'] = self.default_value
        return payload


@dataclass
class DefinitionCheck:
    issues: List[DefinitionIssue] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isComplete': self.is_complete,
            'issues': [i.to_dict() for i in self.issues],
        }


def _blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


def _check_metadata(metadata, issues):
    if not isinstance(metadata, Mapping):
        issues.append(DefinitionIssue('metadata', 'Missing metadata', 'Please provide game metadata'))
        return
    min_players = metadata.get('minPlayers')
    max_players = metadata.get('maxPlayers')
    if not is_number(min_players) or min_players < 1:
        issues.append(DefinitionIssue('metadata.minPlayers', 'Minimum players not specified or invalid',
                                      'What is the minimum number of players?', 'number', default_value=2))
    if not is_number(max_players) or max_players < 1:
        issues.append(DefinitionIssue('metadata.maxPlayers', 'Maximum players not specified or invalid',
                                      'What is the maximum number of players?', 'number', default_value=6))
    if is_number(min_players) and is_number(max_players) and max_players < min_players:
        issues.append(DefinitionIssue('metadata.maxPlayers',
                                      'Maximum players must be greater than or equal to minimum players',
                                      'Maximum players cannot be less than minimum players. Please correct.',
                                      'number', default_value=min_players))
    if _blank(metadata.get('name')):
        issues.append(DefinitionIssue('metadata.name', 'Game name is missing', 'What is the name of this game?'))
    if _blank(metadata.get('description')):
        issues.append(DefinitionIssue('metadata.description', 'Game description is missing',
                                      'Please provide a brief description of the game'))


def _check_fields(fields, issues):
    if not fields:
        issues.append(DefinitionIssue('rounds.fields', 'No round fields defined',
                                      'What data needs to be tracked each round? (This requires manual definition)'))
        return
    seen = set()
    for index, field_def in enumerate(fields):
        path = f"rounds.fields.{index}"
        field_id = field_def.get('id') if isinstance(field_def, Mapping) else None
        if _blank(field_id):
            issues.append(DefinitionIssue(f"{path}.id", 'Round field has no id', 'What should this field be called?'))
            continue
        if field_id in seen:
            issues.append(DefinitionIssue(f"{path}.id", f"Duplicate round field id '{field_id}'",
                                          'Each round field needs a unique id. What should this one be called?'))
        seen.add(field_id)
        field_type = field_def.get('type')
        if field_type not in FIELD_TYPES:
            issues.append(DefinitionIssue(f"{path}.type", f"Round field '{field_id}' has unknown type {field_type!r}",
                                          f"What kind of value is '{field_id}'?", 'select',
                                          options=list(FIELD_TYPES), default_value='number'))
        elif field_type in ('select', 'multi-select') and not field_def.get('options'):
            issues.append(DefinitionIssue(f"{path}.options", f"Round field '{field_id}' has no options",
                                          f"Which choices are allowed for '{field_id}'?"))


def _check_rounds(rounds, issues):
    if not isinstance(rounds, Mapping):
        issues.append(DefinitionIssue('rounds', 'Round structure not defined', 'How many rounds are in the game?',
                                      'select', options=['Fixed number', 'Variable/Until condition met']))
        return
    round_type = rounds.get('type')
    if round_type not in ROUND_TYPES:
        issues.append(DefinitionIssue('rounds.type', 'Round type not specified',
                                      'Does the game have a fixed number of rounds or variable?', 'select',
                                      options=['fixed', 'variable'], default_value='fixed'))
    if round_type == 'fixed' and not is_number(rounds.get('count')):
        issues.append(DefinitionIssue('rounds.count', 'Number of rounds not specified',
                                      'How many rounds are in the game?', 'number', default_value=10))
    _check_fields(rounds.get('fields') or [], issues)


def _check_win_condition(win_condition, round_type, issues):
    if not isinstance(win_condition, Mapping):
        issues.append(DefinitionIssue('winCondition', 'Win condition not defined', 'How does a player win the game?',
                                      'select',
                                      options=['Highest score', 'First to reach target', 'Lowest score', 'Custom condition'],
                                      default_value=HIGHEST_SCORE))
        return
    kind = win_condition.get('type')
    if kind not in WIN_CONDITION_TYPES:
        issues.append(DefinitionIssue('winCondition.type', 'Win condition type not specified',
                                      'What type of win condition?', 'select',
                                      options=list(WIN_CONDITION_TYPES), default_value=HIGHEST_SCORE))
    elif kind == FIRST_TO_TARGET and not is_number(win_condition.get('targetScore')):
        issues.append(DefinitionIssue('winCondition.targetScore', 'Target score not specified',
                                      'What score must players reach to win?', 'number', default_value=100))
    elif kind == CUSTOM and _blank(win_condition.get('customExpression')):
        issues.append(DefinitionIssue('winCondition.customExpression', 'Custom win condition has no expression',
                                      'When does the game end? (e.g. "maxScore >= 100")'))
    elif kind in (HIGHEST_SCORE, LOWEST_SCORE) and round_type in OPEN_ENDED_ROUND_TYPES \
            and _blank(win_condition.get('customExpression')):
        issues.append(DefinitionIssue('winCondition.customExpression',
                                      f"A {kind} game with {round_type} rounds has no way to end",
                                      'When does the game end? (e.g. "maxScore >= 100")'))


def _check_formulas(scoring, issues):
    formulas = (scoring or {}).get('formulas') if isinstance(scoring, Mapping) else None
    if not formulas:
        issues.append(DefinitionIssue('scoring.formulas', 'Scoring formulas not defined',
                                      'How are scores calculated? (This requires manual definition)'))
        return
    for index, formula in enumerate(formulas):
        path = f"scoring.formulas.{index}"
        name = formula.get('name') or formula.get('id') or f"#{index + 1}"
        if formula.get('scope') not in FORMULA_SCOPES:
            issues.append(DefinitionIssue(f"{path}.scope", f"Formula '{name}' has unknown scope {formula.get('scope')!r}",
                                          f"When should '{name}' be applied?", 'select',
                                          options=list(FORMULA_SCOPES), default_value='per-round'))
        check = validate_formula(formula)
        if not check.valid:
            issues.append(DefinitionIssue(f"{path}.expression", f"Formula '{name}' is invalid: {check.error}",
                                          f"Please correct the expression for '{name}'"))


def check_game_definition(definition: Mapping[str, Any]) -> DefinitionCheck:
    """List the gaps in a definition; an empty list means it is playable."""
    issues: List[DefinitionIssue] = []
    if not isinstance(definition, Mapping):
        issues.append(DefinitionIssue('definition', 'Definition must be a JSON object', 'Please provide a definition'))
        return DefinitionCheck(issues)
    _check_metadata(definition.get('metadata'), issues)
    _check_rounds(definition.get('rounds'), issues)
    round_type = (definition.get('rounds') or {}).get('type') if isinstance(definition.get('rounds'), Mapping) else None
    _check_win_condition(definition.get('winCondition'), round_type, issues)
    _check_formulas(definition.get('scoring'), issues)
    return DefinitionCheck(issues)


def apply_corrections(definition: Mapping[str, Any], corrections: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``definition`` with dotted-path corrections applied.

    Numeric path segments index into lists (``rounds.fields.0.type``).
    Raises ValueError for a path that runs off the end of a list.
    """
    updated = copy.deepcopy(dict(definition or {}))
    for path, value in (corrections or {}).items():
        parts = path.split('.')
        current: Any = updated
        for part in parts[:-1]:
            if isinstance(current, list):
                current = current[_list_index(current, part, path)]
                continue
            if not isinstance(current.get(part), (dict, list)):
                current[part] = {}
            current = current[part]
        last = parts[-1]
        if isinstance(current, list):
            current[_list_index(current, last, path)] = value
        else:
            current[last] = value
    return updated


def _list_index(items: list, part: str, path: str) -> int:
    if not part.isdigit() or int(part) >= len(items):
        raise ValueError(f"Invalid correction path: {path}")
    return int(part)
