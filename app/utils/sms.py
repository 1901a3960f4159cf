"""
SMS gateway client.

Form-encoded POST to ``{SMS_GATEWAY_URL}/smsapi``; the gateway answers with
plain text containing ``SMS SUBMITTED`` on success.
"""

import re
import requests
from flask import current_app
import logging

logger = logging.getLogger(__name__)


def clean_phone_number(number: str) -> str:
    return re.sub(r'[^\d+]', '', number or '')


def is_valid_phone_number(number: str) -> bool:
    return bool(re.fullmatch(r'\+?\d{8,15}', number))


def send_sms(to_number: str, message: str) -> bool:
    """Send one SMS. Returns False when the gateway is not configured or rejects the message."""
    base_url = current_app.config.get('SMS_GATEWAY_URL')
    api_key = current_app.config.get('SMS_API_KEY')
    sender_id = current_app.config.get('SMS_SENDER_ID')

    if not base_url or not api_key:
        logger.info(f"SMS: Gateway not configured. SMS to {to_number} skipped")
        return False

    number = clean_phone_number(to_number)
    if not is_valid_phone_number(number):
        logger.warning(f"SMS: Invalid phone number format: {to_number}")
        return False

    try:
        response = requests.post(
            f"{base_url.rstrip('/')}/smsapi",
            data={'api_key': api_key, 'senderid': sender_id, 'number': number, 'message': message},
            timeout=current_app.config.get('SMS_TIMEOUT', 30.0)
        )
        response.raise_for_status()
    except requests.exceptions.Timeout:
        logger.warning(f"SMS: Gateway timeout sending to {number}")
        return False
    except requests.exceptions.RequestException as e:
        logger.error(f"SMS: Gateway error sending to {number}: {e}")
        return False

    if 'SMS SUBMITTED' in response.text:
        logger.info(f"SMS: Submitted to {number}")
        return True

    logger.warning(f"SMS: Gateway rejected message to {number}: {response.text[:200]}")
    return False
