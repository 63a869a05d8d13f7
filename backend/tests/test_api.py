import json


def create_game(client, definition, slug=None):
    payload = {'definition': definition}
    if slug:
        payload['slug'] = slug
    return client.post('/api/games/create', json=payload)


def start_session(client, definition, *names):
    create_game(client, definition)
    res = client.post('/api/games/simple/sessions')
    assert res.status_code == 201
    code = res.get_json()['session_code']
    players = [client.post(f'/api/games/sessions/{code}/join', json={'name': n}).get_json() for n in names]
    res = client.post(f'/api/games/sessions/{code}/start')
    assert res.status_code == 200
    return code, players


def test_create_game(client, simple_game):
    res = create_game(client, simple_game)
    assert res.status_code == 201
    data = res.get_json()
    assert data['game']['slug'] == 'simple'
    assert data['game']['status'] == 'ready'
    assert data['game']['version'] == 1
    assert data['check'] == {'isComplete': True, 'issues': []}


def test_create_game_errors(client, simple_game):
    assert client.post('/api/games/create', json={}).status_code == 400
    create_game(client, simple_game)
    res = create_game(client, simple_game)
    assert res.status_code == 400
    assert 'already exists' in res.get_json()['error']


def test_definition_and_validate(client, simple_game):
    create_game(client, simple_game)
    res = client.get('/api/games/simple/definition')
    assert res.status_code == 200
    assert res.get_json()['definition'] == simple_game
    res = client.get('/api/games/simple/validate')
    assert res.get_json() == {'isComplete': True, 'issues': [], 'version': 1}
    assert client.get('/api/games/nope/definition').status_code == 404


def test_complete_incomplete_definition(client, simple_game):
    del simple_game['rounds']['count']
    data = create_game(client, simple_game).get_json()
    assert data['game']['status'] == 'processing'
    assert [i['field'] for i in data['check']['issues']] == ['rounds.count']

    # sessions need a playable definition
    assert client.post('/api/games/simple/sessions').status_code == 400

    res = client.post('/api/games/simple/complete', json={'corrections': {'rounds.count': 3}})
    assert res.status_code == 200
    body = res.get_json()
    assert body['version'] == 2
    assert body['definition']['rounds']['count'] == 3
    assert body['check']['isComplete'] is True
    assert client.get('/api/games/simple/definition').get_json()['version'] == 2
    assert client.post('/api/games/simple/sessions').status_code == 201


def test_complete_rejects_bad_corrections(client, simple_game):
    create_game(client, simple_game)
    assert client.post('/api/games/simple/complete', json={}).status_code == 400
    res = client.post('/api/games/simple/complete', json={'corrections': {'rounds.fields.7.id': 'x'}})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Invalid correction path: rounds.fields.7.id'


def test_formula_check(client, simple_game):
    create_game(client, simple_game)
    res = client.post('/api/games/simple/formulas/check')
    assert res.get_json() == {'formulas': [{'id': 'points', 'valid': True}]}

    res = client.post('/api/games/simple/formulas/check', json={
        'formulas': [{'id': 'broken', 'expression': 'points +', 'variables': ['points']},
                     {'id': 'bonus', 'expression': 'points * 2', 'variables': ['points']}],
        'sample_data': {'points': 4},
    })
    results = res.get_json()['formulas']
    assert results[0]['valid'] is False
    assert results[0]['error'].startswith('Syntax error')
    assert results[1]['valid'] is True
    assert results[1]['preview'] == {'result': 8}


def test_join_and_state(client, simple_game):
    create_game(client, simple_game)
    code = client.post('/api/games/simple/sessions').get_json()['session_code']
    assert len(code) == 4
    res = client.post(f'/api/games/sessions/{code.lower()}/join', json={'name': 'Ana'})
    assert res.status_code == 201
    player = res.get_json()
    assert client.post(f'/api/games/sessions/{code}/join', json={'name': ''}).status_code == 400
    assert client.post(f'/api/games/sessions/{code}/join', json={'name': 'ANA'}).status_code == 400

    state = client.get(f'/api/games/sessions/{code}/state').get_json()
    assert state['session_code'] == code
    assert state['status'] == 'setup'
    assert state['players'] == [{'id': player['id'], 'name': 'Ana'}]
    assert state['game_slug'] == 'simple'
    assert client.get('/api/games/sessions/ZZZZZ/state').status_code == 404


def test_start_requires_players(client, simple_game):
    create_game(client, simple_game)
    code = client.post('/api/games/simple/sessions').get_json()['session_code']
    client.post(f'/api/games/sessions/{code}/join', json={'name': 'Ana'})
    res = client.post(f'/api/games/sessions/{code}/start')
    assert res.status_code == 400
    assert res.get_json()['error'] == 'At least 2 players are required to start'


def test_play_full_game(client, simple_game):
    code, (ana, ben) = start_session(client, simple_game, 'Ana', 'Ben')
    assert client.post(f'/api/games/sessions/{code}/join', json={'name': 'Cy'}).status_code == 403

    res = client.post(f'/api/games/sessions/{code}/rounds', json={'fields': {'points': {ana['id']: 5, ben['id']: 1}}})
    assert res.status_code == 201
    body = res.get_json()
    assert body['outcome']['scoring']['scores'] == {ana['id']: 5, ben['id']: 1}
    assert body['session']['currentRound'] == 2
    assert body['session']['leader'] == {'playerId': ana['id'], 'score': 5, 'tied': False}

    res = client.post(f'/api/games/sessions/{code}/rounds', json={'fields': {'points': {ana['id']: 0, ben['id']: 2}}})
    body = res.get_json()
    assert body['outcome']['win']['isComplete'] is True
    assert body['session']['status'] == 'completed'
    assert body['session']['result']['winner']['playerId'] == ana['id']
    assert [r['roundNumber'] for r in body['session']['rounds']] == [1, 2]

    res = client.post(f'/api/games/sessions/{code}/rounds', json={'fields': {'points': {ana['id']: 1, ben['id']: 1}}})
    assert res.status_code == 400


def test_invalid_round_is_rejected(client, simple_game):
    code, (ana, ben) = start_session(client, simple_game, 'Ana', 'Ben')
    res = client.post(f'/api/games/sessions/{code}/rounds', json={'fields': {'points': {ana['id']: -3, ben['id']: 1}}})
    assert res.status_code == 400
    body = res.get_json()
    assert body['isValid'] is False
    assert body['errors'] == [{'field': 'points', 'message': 'Points for Ana must be at least 0', 'severity': 'error'}]
    state = client.get(f'/api/games/sessions/{code}/state').get_json()
    assert state['currentRound'] == 1
    assert state['rounds'] == []
    assert client.post(f'/api/games/sessions/{code}/rounds', json={}).status_code == 400


def test_audit_and_reset(client, simple_game):
    code, (ana, ben) = start_session(client, simple_game, 'Ana', 'Ben')
    client.post(f'/api/games/sessions/{code}/rounds', json={'fields': {'points': {ana['id']: 5, ben['id']: 1}}})
    assert client.get(f'/api/games/sessions/{code}/audit').get_json() == {'isValid': True, 'errors': []}

    res = client.post(f'/api/games/sessions/{code}/reset')
    assert res.status_code == 200
    state = res.get_json()
    assert state['rounds'] == []
    assert state['currentRound'] == 1
    assert state['totalScores'] == {ana['id']: 0, ben['id']: 0}
    assert state['status'] == 'in-progress'


def test_check_definition_command(flask_app, tmp_path, simple_game):
    good = tmp_path / 'good.json'
    good.write_text(json.dumps(simple_game))
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=['check-definition', str(good)])
    assert result.exit_code == 0
    assert 'formula points: ok' in result.output
    assert 'Definition is complete.' in result.output

    del simple_game['winCondition']
    bad = tmp_path / 'bad.json'
    bad.write_text(json.dumps(simple_game))
    result = runner.invoke(args=['check-definition', str(bad)])
    assert result.exit_code != 0
    assert 'winCondition: Win condition not defined' in result.output


def test_db_reset_seeds_sample_games(flask_app, client):
    result = flask_app.test_cli_runner().invoke(args=['db-reset'])
    assert result.exit_code == 0
    for slug in ('skull-king', 'hearts', 'yahtzee'):
        res = client.get(f'/api/games/{slug}/validate')
        assert res.get_json()['isComplete'] is True
