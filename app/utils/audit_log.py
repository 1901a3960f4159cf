"""
Audit logging for grant administration and security-relevant events.
Writes JSON lines (python-json-logger) to one file per day under AUDIT_LOG_DIR.
"""

import logging
import os
import threading
from datetime import timedelta
from flask import current_app, request, has_request_context, has_app_context
from flask_login import current_user
from pythonjsonlogger import jsonlogger
from app.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

LOGS_ROOT = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'logs')
AUDIT_LOGGER_NAME = 'audit'
FILE_PREFIX = 'audit_'

SENSITIVE_KEYS = ('password', 'token', 'secret', 'key', 'license_key', 'file_token')

_handler_lock = threading.Lock()


def _logs_dir():
    if has_app_context():
        return current_app.config.get('AUDIT_LOG_DIR') or LOGS_ROOT
    return LOGS_ROOT


def _audit_logger():
    """The 'audit' logger, pointed at today's file."""
    log_dir = _logs_dir()
    os.makedirs(log_dir, exist_ok=True)
    filename = os.path.abspath(os.path.join(log_dir, f"{FILE_PREFIX}{utcnow():%Y-%m-%d}.log"))

    audit = logging.getLogger(AUDIT_LOGGER_NAME)
    with _handler_lock:
        if not any(getattr(h, 'baseFilename', None) == filename for h in audit.handlers):
            for old in list(audit.handlers):
                audit.removeHandler(old)
                old.close()
            handler = logging.FileHandler(filename, encoding='utf-8')
            handler.setFormatter(jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(message)s'))
            audit.addHandler(handler)
            audit.setLevel(logging.INFO)
            audit.propagate = False
    return audit


def mask(details: dict) -> dict:
    masked = {}
    for k, v in details.items():
        if k.lower() in SENSITIVE_KEYS:
            masked[k] = '***'
        else:
            masked[k] = v
    return masked


def _build_log_record(action: str, subject=None, additional_info: dict = None, success: bool = True):
    record = {
        'action': action,
        'success': bool(success),
        'actor': None,
        'subject_type': None,
        'subject_id': None,
        'ip': None,
        'details': None,
    }

    if has_request_context():
        record['ip'] = request.remote_addr
        if current_user and getattr(current_user, 'is_authenticated', False):
            record['actor'] = {'id': current_user.id, 'username': current_user.username}

    if subject is not None:
        record['subject_type'] = subject.__class__.__name__
        record['subject_id'] = getattr(subject, 'id', None)

    if additional_info:
        record['details'] = mask(additional_info)

    return record


def log_action(action: str, description: str, subject=None, additional_info: dict = None, success: bool = True):
    """Write one audit entry. Never raises: an unwritable audit dir is logged and skipped.

    Example: log_action('GRANT_REVOKED', 'Revoked download grant 12', subject=grant)
    """
    try:
        record = _build_log_record(action, subject=subject, additional_info=additional_info, success=success)
        _audit_logger().info(description, extra=record)
    except OSError as e:
        logger.error(f"AuditLog: Could not write {action} entry: {e}")


def purge_audit_logs(retention_days: int, log_dir: str = None) -> int:
    """Remove daily audit files older than ``retention_days``. Returns the number removed."""
    log_dir = log_dir or _logs_dir()
    if not os.path.isdir(log_dir):
        return 0

    cutoff = (utcnow() - timedelta(days=retention_days)).strftime('%Y-%m-%d')
    removed = 0
    for name in os.listdir(log_dir):
        if not (name.startswith(FILE_PREFIX) and name.endswith('.log')):
            continue
        day = name[len(FILE_PREFIX):-len('.log')]
        if day < cutoff:
            try:
                os.remove(os.path.join(log_dir, name))
                removed += 1
            except OSError as e:
                logger.error(f"AuditLog: Failed to remove audit file {name}: {e}")
    logger.info(f"AuditLog: Removed {removed} files older than {retention_days} days")
    return removed
