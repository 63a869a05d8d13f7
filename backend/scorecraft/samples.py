"""Sample game definitions used to seed the database."""

SKULL_KING = {
    'metadata': {
        'name': 'Skull King',
        'description': 'Trick-taking game where you bid the exact number of tricks you will win.',
        'minPlayers': 2,
        'maxPlayers': 6,
        'version': 1,
        'generatedBy': 'manual',
    },
    'rounds': {
        'type': 'fixed',
        'count': 10,
        'numbered': True,
        'fields': [
            {
                'id': 'bid',
                'label': 'Bid',
                'type': 'number',
                'perPlayer': True,
                'validation': {'min': 0, 'maxExpression': 'currentRound', 'required': True},
                'helperText': 'Tricks you expect to win',
            },
            {
                'id': 'tricks',
                'label': 'Tricks Won',
                'type': 'number',
                'perPlayer': True,
                'validation': {'min': 0, 'maxExpression': 'currentRound', 'sumExpression': 'sum === currentRound',
                               'required': True},
            },
            {
                'id': 'bonus',
                'label': 'Bonus Points',
                'type': 'number',
                'perPlayer': True,
                'validation': {'min': 0},
                'helperText': 'Captured mermaids, pirates and the Skull King',
            },
        ],
    },
    'scoring': {
        'formulas': [
            {
                'id': 'round_score',
                'name': 'Round Score',
                'expression': (
                    'bid === 0'
                    ' ? (tricks === 0 ? currentRound * 10 + bonus : -(currentRound * 10))'
                    ' : (bid === tricks ? bid * 20 + bonus : -Math.abs(bid - tricks) * 10)'
                ),
                'variables': ['bid', 'tricks', 'bonus', 'currentRound'],
                'scope': 'per-round',
                'description': 'Exact bids score 20 per trick plus bonuses; misses lose 10 per trick off.',
            },
        ],
    },
    'validation': {
        'rules': [
            {
                'id': 'bids_cover_hand',
                'field': 'bid',
                'rule': 'sum(bid) !== currentRound',
                'errorMessage': 'Bids add up to the cards dealt; somebody is bound to miss.',
                'severity': 'warning',
            },
        ],
    },
    'winCondition': {
        'type': 'highest-score',
        'description': 'Highest score after 10 rounds wins',
    },
}

HEARTS = {
    'metadata': {
        'name': 'Hearts',
        'description': 'Avoid hearts and the queen of spades; the game ends when someone reaches 100.',
        'minPlayers': 3,
        'maxPlayers': 6,
        'version': 1,
        'generatedBy': 'manual',
    },
    'rounds': {
        'type': 'variable',
        'fields': [
            {
                'id': 'points',
                'label': 'Points Taken',
                'type': 'number',
                'perPlayer': True,
                'validation': {'min': 0, 'max': 26, 'required': True},
            },
        ],
    },
    'scoring': {
        'formulas': [
            {
                'id': 'penalty',
                'name': 'Penalty Points',
                'expression': 'points',
                'variables': ['points'],
                'scope': 'per-round',
            },
        ],
    },
    'validation': {
        'rules': [
            {
                'id': 'all_points_dealt',
                'field': 'points',
                'rule': 'points_sum === 26 || points_sum === 26 * (count(points) - 1)',
                'errorMessage': 'Points must add up to 26 (or 26 for everyone else when the moon is shot)',
                'severity': 'error',
            },
        ],
    },
    'winCondition': {
        'type': 'lowest-score',
        'customExpression': 'maxScore >= 100',
        'description': 'Lowest score once anyone reaches 100 wins',
    },
}

YAHTZEE = {
    'metadata': {
        'name': 'Yahtzee',
        'description': 'Thirteen turns of five dice, each scored in a category.',
        'minPlayers': 1,
        'maxPlayers': 8,
        'version': 1,
        'generatedBy': 'manual',
    },
    'rounds': {
        'type': 'fixed',
        'count': 13,
        'fields': [
            {
                'id': 'category',
                'label': 'Category',
                'type': 'select',
                'perPlayer': True,
                'options': ['Ones', 'Twos', 'Threes', 'Fours', 'Fives', 'Sixes', 'Three of a Kind',
                            'Four of a Kind', 'Full House', 'Small Straight', 'Large Straight', 'Yahtzee',
                            'Chance'],
                'validation': {'required': True},
            },
            {
                'id': 'score',
                'label': 'Score',
                'type': 'number',
                'perPlayer': True,
                'validation': {'min': 0, 'max': 50, 'required': True},
            },
        ],
    },
    'scoring': {
        'formulas': [
            {
                'id': 'turn_score',
                'name': 'Turn Score',
                'expression': 'score',
                'variables': ['score'],
                'scope': 'per-round',
            },
            {
                'id': 'upper_bonus',
                'name': 'Bonus Points',
                'expression': 'totalScore >= 63 ? 35 : 0',
                'variables': ['totalScore'],
                'scope': 'final',
                'description': 'Bonus for 63 or more points',
            },
        ],
    },
    'validation': {'rules': []},
    'winCondition': {
        'type': 'highest-score',
        'description': 'Highest total after 13 turns wins',
    },
}

SAMPLE_DEFINITIONS = {
    'skull-king': SKULL_KING,
    'hearts': HEARTS,
    'yahtzee': YAHTZEE,
}
