import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Socket.IO transport
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/ws')
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    PORT = int(os.environ.get('PORT', '3001'))
    # Session timers (seconds)
    JOIN_TIMEOUT_SEC = float(os.environ.get('JOIN_TIMEOUT_SEC', '60'))
    MOVE_TIMEOUT_SEC = float(os.environ.get('MOVE_TIMEOUT_SEC', '30'))
    # Settle delay between pairing and match_start. 0 emits inline.
    MATCH_START_DELAY_SEC = float(os.environ.get('MATCH_START_DELAY_SEC', '1.0'))
    # Set to 0 to keep timers armed but never auto-fired
    ENABLE_TIMERS = os.environ.get('ENABLE_TIMERS', '1') != '0'
