"""Middleware for the request actor context."""
from functools import wraps
from flask import g, request, jsonify, current_app


def load_actor():
    """
    Load the acting user's id into g (Flask's per-request global).

    Authentication happens upstream; the gateway forwards the authenticated
    user id in the header named by ACTOR_HEADER. Sets g.actor_id or None.
    """
    header = current_app.config.get('ACTOR_HEADER', 'X-Actor-Id')
    actor_id = (request.headers.get(header) or '').strip()
    g.actor_id = actor_id[:64] or None


def require_actor(f):
    """
    Decorator: Require an actor id on mutating endpoints.

    Returns a 401 JSON error when the actor header is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('actor_id'):
            header = current_app.config.get('ACTOR_HEADER', 'X-Actor-Id')
            return jsonify({'status': 'error', 'message': f'Missing {header} header'}), 401
        return f(*args, **kwargs)
    return decorated_function
