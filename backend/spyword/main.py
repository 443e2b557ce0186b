from flask import Blueprint, jsonify

from spyword.socketio_events import get_dispatcher

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Spy Word game server!'})


@main.route('/health')
def health():
    return jsonify({'status': 'ok', 'sessions': len(get_dispatcher().registry)})
