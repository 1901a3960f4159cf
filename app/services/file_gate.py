"""
Secure file gate.

Short-lived signed capabilities authorising one file transfer. A capability
is an HS256 JWT with the claims ``path`` (relative to the upload root),
``iat``, ``exp`` and ``typ``. Only tokens with ``typ == "file_gate"`` are
accepted, so other JWTs signed with the same key cannot be replayed here.

Usage:
    gate = FileGate(secret=app.config['SECRET_KEY'], upload_root='/srv/uploads')
    capability = gate.mint('products/7/manual.pdf', ttl_seconds=3600)
    absolute_path = gate.resolve(capability)
"""

from datetime import datetime, timedelta
from typing import Callable, Optional
import calendar
import logging
import os

import jwt
from werkzeug.utils import safe_join

from app.services.grants.errors import Expired, InvalidToken
from app.utils import messages
from app.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

TOKEN_TYPE = 'file_gate'
ALGORITHM = 'HS256'
DEFAULT_TTL_SECONDS = 3600


def _epoch(value: datetime) -> int:
    return calendar.timegm(value.utctimetuple())


class FileGate:

    def __init__(self, secret: str, upload_root: str, default_ttl: int = DEFAULT_TTL_SECONDS,
                 clock: Optional[Callable[[], datetime]] = None):
        if not secret:
            raise ValueError('FileGate requires a signing secret')
        self._secret = secret
        self.upload_root = os.path.abspath(upload_root)
        self.default_ttl = default_ttl
        self._clock = clock or utcnow

    def mint(self, file_path: str, ttl_seconds: Optional[int] = None) -> str:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        issued = self._clock()
        payload = {
            'path': file_path.replace('\\', '/'),
            'typ': TOKEN_TYPE,
            'iat': _epoch(issued),
            'exp': _epoch(issued + timedelta(seconds=ttl)),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, capability: str) -> dict:
        """Verify signature, type and expiry; return the claims."""
        try:
            # exp/iat are checked against our own clock below
            claims = jwt.decode(
                capability,
                self._secret,
                algorithms=[ALGORITHM],
                options={'verify_exp': False, 'verify_iat': False,
                         'require': ['path', 'typ', 'iat', 'exp']},
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"FileGate: Rejected capability: {e}")
            raise InvalidToken(messages.FILE_TOKEN_INVALID)

        if claims.get('typ') != TOKEN_TYPE:
            logger.warning(f"FileGate: Rejected capability with type {claims.get('typ')!r}")
            raise InvalidToken(messages.FILE_TOKEN_INVALID)
        if _epoch(self._clock()) >= int(claims['exp']):
            raise Expired(messages.FILE_TOKEN_EXPIRED)
        return claims

    def resolve(self, capability: str) -> str:
        """Absolute path of the file a valid capability points at."""
        claims = self.decode(capability)
        target = safe_join(self.upload_root, claims['path'])
        if target is None:
            logger.warning(f"FileGate: Path escapes upload root: {claims['path']}")
            raise InvalidToken(messages.FILE_TOKEN_INVALID)
        if not os.path.isfile(target):
            logger.warning(f"FileGate: File not found: {claims['path']}")
            raise InvalidToken(messages.FILE_NOT_FOUND)
        return target
