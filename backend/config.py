import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Headerless CSV, one word in the first column of each row
    WORD_LIST_PATH = os.environ.get('WORD_LIST_PATH') or os.path.join(BASE_DIR, 'word_list.csv')
    # Round length bounds (minutes, inclusive)
    MIN_DURATION_MIN = int(os.environ.get('MIN_DURATION_MIN', '5'))
    MAX_DURATION_MIN = int(os.environ.get('MAX_DURATION_MIN', '60'))
    # Minimum active players before roles can be assigned
    MIN_PLAYERS = int(os.environ.get('MIN_PLAYERS', '4'))
    NICKNAME_MAX_LENGTH = int(os.environ.get('NICKNAME_MAX_LENGTH', '20'))
    # Host reconnect window before a host disconnect aborts the session (sec). 0 ends immediately.
    HOST_DISCONNECT_GRACE_SEC = float(os.environ.get('HOST_DISCONNECT_GRACE_SEC', '2'))
    # Optional: heartbeat interval for timer worker logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173',
        ).split(',')
        if origin.strip()
    ]
