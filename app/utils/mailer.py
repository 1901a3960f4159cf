from flask import current_app, has_app_context
import smtplib
from email.message import EmailMessage
import logging

logger = logging.getLogger(__name__)


def _send_email(to_address: str, subject: str, body: str) -> bool:
    if not has_app_context():
        logger.warning(f"Mailer: No app context. Email to {to_address} not sent: {subject}")
        return False

    config = current_app.config
    sender = config.get('MAIL_DEFAULT_SENDER')
    mail_server = config.get('MAIL_SERVER')
    mail_username = config.get('MAIL_USERNAME')
    mail_password = config.get('MAIL_PASSWORD')
    use_tls = bool(config.get('MAIL_USE_TLS'))
    use_ssl = bool(config.get('MAIL_USE_SSL'))

    try:
        mail_port = int(config.get('MAIL_PORT') or 0)
    except (TypeError, ValueError):
        mail_port = 0

    if not mail_server or not mail_port:
        # Not configured - development mode
        logger.info(f"Mailer: MAIL_SERVER not configured. Email to {to_address}: {subject}")
        return True

    msg = EmailMessage()
    msg['Subject'] = subject
    msg['From'] = sender or mail_username or 'no-reply@localhost'
    msg['To'] = to_address
    msg.set_content(body)

    try:
        if use_ssl:
            with smtplib.SMTP_SSL(mail_server, mail_port) as server:
                if mail_username and mail_password:
                    server.login(mail_username, mail_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(mail_server, mail_port) as server:
                server.ehlo()
                if use_tls:
                    server.starttls()
                    server.ehlo()
                if mail_username and mail_password:
                    server.login(mail_username, mail_password)
                server.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Mailer: Error sending email to {to_address}: {e}")
        raise


def send_generic_email(to_address: str, subject: str, body: str) -> bool:
    return _send_email(to_address, subject, body)
