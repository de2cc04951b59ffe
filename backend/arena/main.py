from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


def _status():
    protocol = current_app.extensions['arena']
    return jsonify({
        'status': 'ok',
        'message': 'Rock Paper Scissors session server is running',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'sessions': len(protocol.store),
    })


@main.route('/')
def index():
    return _status()


@main.route('/health')
def health():
    return _status()


@main.route('/sessions')
def sessions():
    protocol = current_app.extensions['arena']
    return jsonify({'sessions': protocol.store.snapshot()})
