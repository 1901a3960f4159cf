from app.utils.decorators import role_required
from app.utils.timeutil import utcnow

__all__ = [
    'role_required',
    'utcnow',
]
