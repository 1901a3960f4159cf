from functools import wraps
from flask import jsonify
from flask_login import current_user
from flask_babel import _


def role_required(*roles):
    """Decorator to require specific user roles for an API route."""
    def wrapper(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'success': False, 'message': _("Authentication required."), 'data': None}), 401
            if current_user.role not in roles:
                return jsonify({
                    'success': False,
                    'message': _("You do not have the required privileges to access this resource."),
                    'data': None,
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return wrapper
