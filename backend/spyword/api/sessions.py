from flask import Blueprint, jsonify

from spyword.socketio_events import get_dispatcher

sessions = Blueprint('sessions', __name__)


@sessions.route('/<string:session_id>', methods=['GET'])
def get_session(session_id):
    """
    Reports whether a session code is live, for join and host pages.
    """
    session = get_dispatcher().registry.get(session_id)
    if session is None:
        return jsonify({'error': 'Session not found'}), 404
    return jsonify(session.snapshot()), 200
