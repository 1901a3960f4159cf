from concurrent.futures import ThreadPoolExecutor
from typing import Optional
import logging

from app.utils.mailer import send_generic_email
from app.utils.sms import send_sms

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Fire-and-forget delivery of email and SMS notifications.

    Messages are rendered by the caller (plain strings) and delivered on a
    small thread pool, or inline when ``run_async`` is False. Delivery errors
    are logged and never reach the caller.

    Args:
        app: Flask app; each delivery runs inside its app context
        run_async: deliver on the pool (True) or in the calling thread
        max_workers: pool size
    """

    def __init__(self, app, run_async: bool = True, max_workers: int = 2):
        self.app = app
        self.run_async = run_async
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='notify') \
            if run_async else None

    def dispatch(self, email: Optional[str] = None, subject: Optional[str] = None, body: Optional[str] = None,
                 phone: Optional[str] = None, sms_body: Optional[str] = None):
        if self._executor is not None:
            return self._executor.submit(self._deliver, email, subject, body, phone, sms_body)
        return self._deliver(email, subject, body, phone, sms_body)

    def _deliver(self, email, subject, body, phone, sms_body):
        sent = []
        with self.app.app_context():
            if email and subject:
                try:
                    send_generic_email(email, subject, body or '')
                    sent.append('email')
                except Exception as e:
                    logger.error(f"NotificationDispatcher: Email to {email} failed: {e}")
            if phone and sms_body:
                try:
                    if send_sms(phone, sms_body):
                        sent.append('sms')
                except Exception as e:
                    logger.error(f"NotificationDispatcher: SMS to {phone} failed: {e}")
        return sent

    def shutdown(self, wait: bool = True):
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
