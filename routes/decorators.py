from functools import wraps
from flask_login import current_user
from flask import jsonify

def role_required(*roles):
    """
    Custom decorator to restrict access to users with specific roles.
    Example: @role_required('Admin', 'Accountant')
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                # This should be handled by @login_required, but as a fallback
                return jsonify({'success': False, 'error': 'Unauthenticated',
                                'message': 'Please log in first.'}), 401
            if current_user.role not in roles:
                return jsonify({'success': False, 'error': 'Forbidden',
                                'message': 'You do not have permission to perform this action.'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
