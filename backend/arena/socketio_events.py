from flask import current_app, request
from flask_socketio import emit
from arena import socketio


def _protocol():
    return current_app.extensions['arena']


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect():
    emit('connected', {'message': 'Connected to /ws', 'sid': _get_sid()})


def handle_disconnect(reason=None):
    # Same cleanup path as an explicit leave_session
    current_app.logger.info(f"[disconnect] connection={_get_sid()} reason={reason}")
    _protocol().disconnect(_get_sid())


def handle_create_session(data=None):
    _protocol().create_session(_get_sid(), data)


def handle_join_session(data=None):
    _protocol().join_session(_get_sid(), data)


def handle_submit_choice(data=None):
    _protocol().submit_choice(_get_sid(), data)


def handle_leave_session(data=None):
    _protocol().leave_session(_get_sid(), data)


def handle_query_state(data=None):
    _protocol().query_state(_get_sid(), data)


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('create_session', handle_create_session, namespace=namespace)
    socketio.on_event('join_session', handle_join_session, namespace=namespace)
    socketio.on_event('submit_choice', handle_submit_choice, namespace=namespace)
    socketio.on_event('leave_session', handle_leave_session, namespace=namespace)
    socketio.on_event('query_state', handle_query_state, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
