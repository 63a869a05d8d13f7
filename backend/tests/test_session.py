import pytest

from scorecraft.services.games.expression import ExpressionEvaluator
from scorecraft.services.games.session import COMPLETED, IN_PROGRESS, SETUP, GameSession, SessionError


def started(definition, *names):
    session = GameSession(definition=definition)
    for name in names:
        session.add_player(name)
    session.start()
    return session


def test_players_get_sequential_ids(simple_game):
    session = GameSession(definition=simple_game)
    assert session.add_player('Ana') == {'id': 'player_1', 'name': 'Ana'}
    assert session.add_player('Ben')['id'] == 'player_2'
    assert session.total_scores == {'player_1': 0, 'player_2': 0}


def test_duplicate_names_and_full_tables_are_rejected(simple_game):
    simple_game['metadata']['maxPlayers'] = 2
    session = GameSession(definition=simple_game)
    session.add_player('Ana')
    with pytest.raises(SessionError):
        session.add_player('ana')
    session.add_player('Ben')
    with pytest.raises(SessionError):
        session.add_player('Cy')


def test_start_requires_minimum_players(simple_game):
    session = GameSession(definition=simple_game)
    session.add_player('Ana')
    with pytest.raises(SessionError) as exc:
        session.start()
    assert 'At least 2 players' in str(exc.value)
    assert session.status == SETUP


def test_min_players_fallback_when_definition_is_silent(simple_game):
    del simple_game['metadata']['minPlayers']
    session = GameSession(definition=simple_game)
    session.add_player('Solo')
    session.start(min_players=1)
    assert session.status == IN_PROGRESS


def test_rounds_cannot_be_submitted_before_start(simple_game):
    session = GameSession(definition=simple_game)
    with pytest.raises(SessionError):
        session.submit_round({'points': {}})


def test_accepted_round_advances_and_records(simple_game):
    session = started(simple_game, 'Ana', 'Ben')
    outcome = session.submit_round({'points': {'player_1': '7', 'player_2': 3}})
    assert outcome.accepted
    assert outcome.scoring.scores == {'player_1': 7, 'player_2': 3}
    assert session.current_round == 2
    assert session.total_scores == {'player_1': 7, 'player_2': 3}
    assert session.rounds == [{
        'roundNumber': 1,
        'fields': {'points': {'player_1': 7, 'player_2': 3}},
        'roundScores': {'player_1': 7, 'player_2': 3},
    }]
    assert not outcome.win.is_complete


def test_rejected_round_leaves_state_untouched(simple_game):
    session = started(simple_game, 'Ana', 'Ben')
    session.submit_round({'points': {'player_1': 5, 'player_2': 1}})
    outcome = session.submit_round({'points': {'player_1': -1, 'player_2': 2}})
    assert not outcome.accepted
    assert outcome.scoring is None
    assert outcome.validation.fields() == ['points']
    assert session.current_round == 2
    assert session.total_scores == {'player_1': 5, 'player_2': 1}
    assert len(session.rounds) == 1


def test_game_completes_after_last_fixed_round(simple_game):
    session = started(simple_game, 'Ana', 'Ben')
    session.submit_round({'points': {'player_1': 5, 'player_2': 1}})
    outcome = session.submit_round({'points': {'player_1': 0, 'player_2': 2}})
    assert outcome.win.is_complete
    assert outcome.win.winner.player_id == 'player_1'
    assert session.status == COMPLETED
    assert session.result == outcome.win
    with pytest.raises(SessionError):
        session.submit_round({'points': {'player_1': 1, 'player_2': 1}})


def test_final_formulas_apply_once_at_the_end(yahtzee):
    yahtzee['rounds']['count'] = 2
    session = started(yahtzee, 'Ana', 'Ben')
    session.submit_round({'category': {'player_1': 'Sixes', 'player_2': 'Ones'},
                          'score': {'player_1': 30, 'player_2': 3}})
    assert session.total_scores == {'player_1': 30, 'player_2': 3}
    outcome = session.submit_round({'category': {'player_1': 'Chance', 'player_2': 'Twos'},
                                    'score': {'player_1': 35, 'player_2': 6}})
    assert outcome.final.updated_totals == {'player_1': 100, 'player_2': 9}
    assert session.total_scores == {'player_1': 100, 'player_2': 9}
    assert session.result.winner.to_dict() == {'playerId': 'player_1', 'score': 100, 'reason': 'Highest score'}


def test_hearts_plays_until_someone_reaches_the_limit(hearts):
    session = started(hearts, 'Ana', 'Ben', 'Cy')
    for _ in range(3):
        outcome = session.submit_round({'points': {'player_1': 26, 'player_2': 0, 'player_3': 0}})
        assert not outcome.win.is_complete
    outcome = session.submit_round({'points': {'player_1': 26, 'player_2': 0, 'player_3': 0}})
    assert outcome.win.is_complete
    assert outcome.win.player_ids() == ['player_2', 'player_3']
    assert session.current_round == 5


def test_first_to_target_ends_early(simple_game):
    simple_game['rounds']['count'] = 10
    simple_game['winCondition'] = {'type': 'first-to-target', 'targetScore': 10}
    session = started(simple_game, 'Ana', 'Ben')
    outcome = session.submit_round({'points': {'player_1': 4, 'player_2': 12}})
    assert outcome.win.winner.to_dict() == {'playerId': 'player_2', 'score': 12, 'reason': 'First to reach 10 points'}
    assert session.status == COMPLETED
    assert session.target_progress() == {'player_1': 40, 'player_2': 100}


def test_formula_timeouts_score_zero(simple_game):
    session = GameSession(definition=simple_game, evaluator=ExpressionEvaluator(max_steps=1))
    session.add_player('Ana')
    session.add_player('Ben')
    session.start()
    outcome = session.submit_round({'points': {'player_1': 5, 'player_2': 1}})
    assert outcome.accepted
    assert outcome.scoring.scores == {'player_1': 5, 'player_2': 1}
    simple_game['scoring']['formulas'][0]['expression'] = 'points * 2 + 1'
    outcome = session.submit_round({'points': {'player_1': 5, 'player_2': 1}})
    assert outcome.scoring.scores == {'player_1': 0, 'player_2': 0}
    assert len(outcome.scoring.errors) == 2


def test_reset_keeps_players(simple_game):
    session = started(simple_game, 'Ana', 'Ben')
    session.submit_round({'points': {'player_1': 5, 'player_2': 1}})
    session.reset()
    assert session.rounds == []
    assert session.current_round == 1
    assert session.total_scores == {'player_1': 0, 'player_2': 0}
    assert session.status == IN_PROGRESS
    assert len(session.players) == 2


def test_audit_and_leader(simple_game):
    session = started(simple_game, 'Ana', 'Ben')
    session.submit_round({'points': {'player_1': 5, 'player_2': 1}})
    session.rounds[0]['fields']['points']['player_2'] = -4
    assert [i.message for i in session.audit().errors] == ['Round 1: Points for Ben must be at least 0']
    assert session.leader() == {'playerId': 'player_1', 'score': 5, 'tied': False}


def test_round_trip_through_dict(simple_game):
    session = started(simple_game, 'Ana', 'Ben')
    session.submit_round({'points': {'player_1': 5, 'player_2': 1}})
    session.submit_round({'points': {'player_1': 1, 'player_2': 1}})
    restored = GameSession.from_dict(simple_game, session.to_dict())
    assert restored.to_dict() == session.to_dict()
    assert restored.result == session.result


def test_remove_player_only_during_setup(simple_game):
    session = GameSession(definition=simple_game)
    session.add_player('Ana')
    session.add_player('Ben')
    session.remove_player('player_1')
    assert session.player_ids == ['player_2']
    assert session.add_player('Cy')['id'] == 'player_3'
    with pytest.raises(SessionError):
        session.remove_player('player_9')
    session.start()
    with pytest.raises(SessionError):
        session.remove_player('player_2')
