from flask import Blueprint, jsonify, request

from spyword.services.game.errors import Conflict, GameError
from spyword.socketio_events import get_dispatcher

words = Blueprint('words', __name__)


@words.route('', methods=['POST'])
def add_word():
    """
    Adds a word to the shared pool and appends it to the word list file.
    """
    data = request.get_json(silent=True) or {}
    word = data.get('word')
    if not isinstance(word, str) or not word.strip():
        return jsonify({'error': 'Word is required'}), 400

    try:
        added = get_dispatcher().registry.words.add(word)
    except Conflict as exc:
        return jsonify({'error': exc.message}), 409
    except GameError as exc:
        return jsonify({'error': exc.message}), 400

    return jsonify({'success': True, 'message': 'Word added successfully', 'word': added}), 201
