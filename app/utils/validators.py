import re
from datetime import datetime, timezone
from flask import request
from flask_babel import lazy_gettext as _

MAX_PER_PAGE = 100


class PayloadError(ValueError):
    """Raised for malformed request input; rendered as a 400 response."""

    def __init__(self, message):
        self.message = str(message)
        super().__init__(self.message)


def get_json_payload():
    """JSON object body of the current request.

    Raises PayloadError if the body is missing or not an object.
    """
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise PayloadError(_('Request body must be a JSON object'))
    return payload


def require_str(payload, key, max_length=255):
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise PayloadError(_('%(field)s is required', field=key))
    value = str(value).strip()
    if len(value) > max_length:
        raise PayloadError(_('%(field)s must be at most %(max)s characters', field=key, max=max_length))
    return value


def optional_str(payload, key, max_length=255):
    if payload.get(key) is None:
        return None
    return require_str(payload, key, max_length)


def parse_int(value, field, minimum=None, maximum=None):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise PayloadError(_('%(field)s must be an integer', field=field))
    if isinstance(value, bool) or (minimum is not None and number < minimum) \
            or (maximum is not None and number > maximum):
        raise PayloadError(_('%(field)s is out of range', field=field))
    return number


def optional_int(payload, key, minimum=None, maximum=None):
    if payload.get(key) is None:
        return None
    return parse_int(payload[key], key, minimum, maximum)


def parse_datetime(value, field):
    """ISO-8601 timestamp to a naive UTC datetime."""
    if value is None or value == '':
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise PayloadError(_('%(field)s must be an ISO-8601 date', field=field))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_bool(value):
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def parse_pagination(args):
    page = parse_int(args.get('page', 1), 'page', minimum=1)
    per_page = parse_int(args.get('limit', args.get('per_page', 20)), 'limit', minimum=1, maximum=MAX_PER_PAGE)
    return page, per_page


def is_valid_device_id(device_id):
    return bool(re.fullmatch(r'[A-Za-z0-9._:\-]{1,128}', device_id or ''))

