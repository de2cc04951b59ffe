from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config

socketio = SocketIO(async_mode=None)


def _allowed_origins(value):
    if not value or value == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def init_arena(flask_app):
    """Wire the session store, timeout supervisor and protocol handler.

    The protocol handler is kept in ``flask_app.extensions['arena']`` so
    socket handlers reach it through ``current_app`` instead of globals.
    """
    from arena.protocol import SessionProtocol
    from arena.services.games.scheduler import TimeoutSupervisor, TimerTable
    from arena.sessions import SessionStore

    config = flask_app.config
    namespace = config.get('SOCKETIO_NAMESPACE', '/ws')

    def notify(event, payload, to):
        socketio.emit(event, payload, to=to, namespace=namespace)

    # In tests timers stay armed but only fire when a test fires them
    autostart = bool(config.get('ENABLE_TIMERS', True))
    if config.get('TESTING') and not config.get('ENABLE_TIMERS_IN_TESTS'):
        autostart = False

    timers = TimerTable(
        start_task=socketio.start_background_task,
        sleep=socketio.sleep,
        autostart=autostart,
        logger=flask_app.logger,
    )
    supervisor = TimeoutSupervisor(
        timers,
        notify,
        join_timeout=float(config.get('JOIN_TIMEOUT_SEC', 60)),
        move_timeout=float(config.get('MOVE_TIMEOUT_SEC', 30)),
        start_delay=float(config.get('MATCH_START_DELAY_SEC', 1.0)),
        logger=flask_app.logger,
    )
    store = SessionStore(supervisor)
    protocol = SessionProtocol(store, supervisor, notify, logger=flask_app.logger)
    flask_app.extensions['arena'] = protocol
    return protocol


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = _allowed_origins(flask_app.config.get('CORS_ALLOWED_ORIGINS'))
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    init_arena(flask_app)

    from arena.main import main
    flask_app.register_blueprint(main)

    # Register Socket.IO event handlers on the configured namespace
    from arena.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    @click.command('simulate-match')
    @click.option('--best-of', 'best_of', type=int, default=3, show_default=True,
                  help='Odd number of rounds; 0 plays until --max-rounds.')
    @click.option('--max-rounds', type=int, default=25, show_default=True)
    @click.option('--seed', type=int, default=None)
    def simulate_match_command(best_of, max_rounds, seed):
        """Play an offline match between two random players."""
        from arena.match import MatchMode, Side, simulate_offline_match
        if best_of and best_of % 2 == 0:
            raise click.BadParameter('must be odd', param_hint='--best-of')
        mode = MatchMode.best_of(best_of) if best_of else MatchMode.unlimited()
        engine = simulate_offline_match(mode, seed=seed, max_rounds=max_rounds)
        state = engine.state
        for idx, side in enumerate(state.history, start=1):
            click.echo(f'round {idx}: {side.value}')
        if state.tiebreaker_history:
            click.echo('tiebreaker was played')
        winner = state.winner.value if state.winner else 'none'
        click.echo(f"final {state.rounds_won[Side.SELF]}-{state.rounds_won[Side.OPPONENT]} winner={winner}")

    flask_app.cli.add_command(simulate_match_command)

    return flask_app
