from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import json
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from scorecraft.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Register Socket.IO event handlers
    from scorecraft.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database with the sample games."""
        from scorecraft.models import Game, GameDefinition
        from scorecraft.samples import SAMPLE_DEFINITIONS
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            for slug, definition in SAMPLE_DEFINITIONS.items():
                metadata = definition['metadata']
                game = Game(
                    slug=slug,
                    name=metadata['name'],
                    description=metadata['description'],
                    min_players=metadata.get('minPlayers'),
                    max_players=metadata.get('maxPlayers'),
                    status='ready',
                )
                record = GameDefinition(game=game, version=1)
                record.document = definition
                db.session.add(game)
                db.session.add(record)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('check-definition')
    @click.argument('path', type=click.Path(exists=True, dir_okay=False))
    def check_definition_command(path):
        """Reports gaps and broken formulas in a game definition file."""
        from scorecraft.services.games.definition import check_game_definition
        from scorecraft.services.games.scoring import validate_formula
        with open(path, encoding='utf-8') as fh:
            try:
                definition = json.load(fh)
            except ValueError as exc:
                raise click.ClickException(f'{path} is not valid JSON: {exc}')

        timeout_ms = int(flask_app.config.get('FORMULA_VALIDATION_TIMEOUT_MS', 100))
        for formula in (definition.get('scoring') or {}).get('formulas') or []:
            check = validate_formula(formula, timeout_ms=timeout_ms)
            status = 'ok' if check.valid else f'invalid: {check.error}'
            click.echo(f"formula {formula.get('id')}: {status}")

        result = check_game_definition(definition)
        for issue in result.issues:
            click.echo(f"{issue.field}: {issue.issue}")
        if not result.is_complete:
            raise click.ClickException(f'{len(result.issues)} issue(s) found')
        click.echo('Definition is complete.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(check_definition_command)

    return flask_app
