from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config

socketio = SocketIO(async_mode=None)


def create_app(config_class=Config, scheduler=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = flask_app.config.get('CORS_ORIGINS', [])
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from spyword.services.game import CsvWordStore, SessionRegistry, SessionRules, WordSupplier
    from spyword.services.game.scheduler import BackgroundScheduler
    from spyword.socketio_events import ConnectionDispatcher, SocketIOTransport, register_socketio_handlers

    # The word list is required: an unreadable file aborts startup
    words = WordSupplier.from_store(CsvWordStore(flask_app.config['WORD_LIST_PATH']))
    if scheduler is None:
        scheduler = BackgroundScheduler(socketio, heartbeat_sec=int(flask_app.config.get('TIMER_HEARTBEAT_SEC', 0)))
    registry = SessionRegistry(words, scheduler, rules=SessionRules.from_config(flask_app.config))
    flask_app.extensions['spyword'] = ConnectionDispatcher(
        registry,
        SocketIOTransport(socketio),
        host_grace_sec=float(flask_app.config.get('HOST_DISCONNECT_GRACE_SEC', 0)),
    )

    # Import and register blueprints here
    from spyword.main import main
    flask_app.register_blueprint(main)

    from spyword.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from spyword.api.words import words as words_bp
    flask_app.register_blueprint(words_bp, url_prefix='/api/words')

    # Register Socket.IO event handlers
    register_socketio_handlers(socketio)

    @click.command('add-word')
    @click.argument('word')
    def add_word_command(word):
        """Appends WORD to the word list."""
        from spyword.services.game.errors import GameError
        try:
            added = words.add(word)
        except GameError as exc:
            raise click.ClickException(exc.message)
        click.echo(f'Added "{added}" ({len(words)} words).')

    flask_app.cli.add_command(add_word_command)

    flask_app.logger.info(f"[startup] words={len(words)} min_players={registry.rules.min_players}")
    return flask_app
