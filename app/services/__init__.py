"""
Digital delivery services.

Capability grants (download links and license keys), the secure file gate
and the order/catalog lookups they depend on.
"""

from app.services.file_gate import FileGate
from app.services.grants import GrantService

__all__ = [
    'FileGate',
    'GrantService',
]
