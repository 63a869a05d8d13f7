from scorecraft.services.games.context import EvaluationContext
from scorecraft.services.games.validation import (
    WARNING,
    coerce_round_data,
    get_field_error,
    is_field_valid,
    validate_field,
    validate_game_session,
    validate_round_data,
)


TRICKS = {'id': 'tricks', 'label': 'Tricks Won', 'type': 'number', 'perPlayer': True,
          'validation': {'sum': 5, 'min': 0}}


def ctx_for(players=('p1', 'p2', 'p3'), current_round=1, names=None):
    return EvaluationContext(current_round=current_round, player_ids=list(players), player_names=names or {})


def test_sum_mismatch_message():
    messages = validate_field(TRICKS, {'p1': 2, 'p2': 2, 'p3': 0}, ctx_for())
    assert messages == ['Total Tricks Won must equal 5 (currently 4)']


def test_sum_satisfied():
    assert is_field_valid(TRICKS, {'p1': 2, 'p2': 3, 'p3': 0}, ctx_for())


def test_required_field():
    field = {'id': 'score', 'label': 'Score', 'type': 'number', 'validation': {'required': True}}
    assert get_field_error(field, None, ctx_for()) == 'Score is required'
    assert get_field_error(field, '', ctx_for()) == 'Score is required'


def test_required_per_player_field_needs_every_player():
    field = {'id': 'bid', 'label': 'Bid', 'type': 'number', 'perPlayer': True, 'validation': {'required': True}}
    assert get_field_error(field, {'p1': 1, 'p2': 0}, ctx_for()) == 'Bid is required for all players'
    assert get_field_error(field, {'p1': 1, 'p2': 0, 'p3': ''}, ctx_for()) == 'Bid is required for all players'
    assert get_field_error(field, 4, ctx_for()) == 'Bid is required for all players'
    assert is_field_valid(field, {'p1': 1, 'p2': 0, 'p3': 2}, ctx_for())


def test_number_bounds_use_player_names():
    field = {'id': 'bid', 'label': 'Bid', 'type': 'number', 'perPlayer': True, 'validation': {'min': 0, 'max': 10}}
    ctx = ctx_for(names={'p1': 'Ana'})
    assert validate_field(field, {'p1': -1}, ctx) == ['Bid for Ana must be at least 0']
    assert validate_field(field, {'p2': 11}, ctx) == ['Bid for Player 2 must be at most 10']
    assert validate_field(field, {'p3': 'lots'}, ctx) == ['Bid for Player 3 must be a number']


def test_max_expression_is_evaluated_per_player():
    field = {'id': 'bid', 'label': 'Bid', 'type': 'number', 'perPlayer': True,
             'validation': {'maxExpression': 'currentRound'}}
    ctx = ctx_for(current_round=3)
    assert validate_field(field, {'p1': 3, 'p2': 0}, ctx) == []
    assert validate_field(field, {'p1': 4}, ctx) == ['Bid for Player 1 cannot exceed 3']


def test_sum_expression_binds_sum():
    field = {'id': 'tricks', 'label': 'Tricks', 'type': 'number', 'perPlayer': True,
             'validation': {'sumExpression': 'sum === currentRound'}}
    ctx = ctx_for(current_round=4)
    assert validate_field(field, {'p1': 1, 'p2': 3, 'p3': 0}, ctx) == []
    assert validate_field(field, {'p1': 1, 'p2': 1, 'p3': 0}, ctx) == [
        'Total Tricks violates constraint: sum === currentRound'
    ]


def test_values_for_unknown_players_are_flagged():
    messages = validate_field(TRICKS, {'p1': 5, 'ghost': 0}, ctx_for())
    assert messages == ['Tricks Won has values for unknown players: ghost']


def test_select_options():
    field = {'id': 'trump', 'label': 'Trump', 'type': 'select', 'options': ['hearts', 'spades']}
    assert validate_field(field, 'hearts', ctx_for()) == []
    assert validate_field(field, 'clubs', ctx_for()) == ['clubs is not a valid option']

    multi = {'id': 'bonus', 'label': 'Bonuses', 'type': 'multi-select', 'options': ['mermaid', 'pirate']}
    assert validate_field(multi, ['pirate', 'kraken', 'whale'], ctx_for()) == ['Invalid options: kraken, whale']


def test_round_validation_collects_field_and_rule_issues(hearts):
    ctx = ctx_for()
    result = validate_round_data(hearts, {'points': {'p1': 10, 'p2': 10, 'p3': 30}}, ctx)
    assert not result.is_valid
    assert result.fields() == ['points', 'points']
    messages = [issue.message for issue in result.errors]
    assert 'Points Taken for Player 3 must be at most 26' in messages
    assert hearts['validation']['rules'][0]['errorMessage'] in messages


def test_shooting_the_moon_passes_round_rule(hearts):
    result = validate_round_data(hearts, {'points': {'p1': 0, 'p2': 26, 'p3': 26}}, ctx_for())
    assert result.is_valid
    assert result.to_dict() == {'isValid': True, 'errors': []}


def test_warning_rules_do_not_block_a_round(skull_king):
    round_data = {'bid': {'p1': 1, 'p2': 0}, 'tricks': {'p1': 1, 'p2': 0}}
    result = validate_round_data(skull_king, round_data, ctx_for(players=('p1', 'p2')))
    assert result.is_valid
    assert [issue.severity for issue in result.errors] == [WARNING]


def test_validation_does_not_mutate_the_submission(skull_king):
    round_data = {'bid': {'p1': '1', 'p2': 0}, 'tricks': {'p1': 1, 'p2': 0}}
    validate_round_data(skull_king, round_data, ctx_for(players=('p1', 'p2')))
    assert round_data['bid']['p1'] == '1'


def test_session_validation_prefixes_round_numbers(simple_game):
    rounds = [
        {'roundNumber': 1, 'fields': {'points': {'p1': 3, 'p2': 1}}},
        {'roundNumber': 2, 'fields': {'points': {'p1': -2, 'p2': 1}}},
    ]
    result = validate_game_session(simple_game, rounds, ctx_for(players=('p1', 'p2')))
    assert [issue.message for issue in result.errors] == ['Round 2: Points for Player 1 must be at least 0']


def test_coerce_round_data_turns_numeric_strings_into_numbers(simple_game):
    submitted = {'points': {'p1': '3', 'p2': '2.5'}, 'note': '7'}
    coerced = coerce_round_data(simple_game, submitted)
    assert coerced == {'points': {'p1': 3, 'p2': 2.5}, 'note': '7'}
    assert submitted['points']['p1'] == '3'


def test_out_of_range_numbers_are_checked_without_raising(simple_game):
    result = validate_round_data(simple_game, {'points': {'p1': 10 ** 400, 'p2': 1}}, ctx_for(players=('p1', 'p2')))
    assert result.is_valid

    messages = validate_field(TRICKS, {'p1': 10 ** 400, 'p2': 0, 'p3': 0}, ctx_for())
    assert messages == ['Total Tricks Won must equal 5 (currently Infinity)']


def test_per_player_field_rejects_a_single_value(skull_king):
    round_data = {'bid': {'p1': 1, 'p2': 0}, 'tricks': {'p1': 1, 'p2': 0}, 'bonus': 30}
    result = validate_round_data(skull_king, round_data, ctx_for(players=('p1', 'p2')))
    assert not result.is_valid
    errors = [issue for issue in result.errors if issue.severity != WARNING]
    assert [(issue.field, issue.message) for issue in errors] == [('bonus', 'Bonus Points must have a value per player')]
