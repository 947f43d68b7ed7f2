# backend/tradeclarity/services/snaptrade/__init__.py
"""
SnapTrade brokerage aggregator integration.

Architecture:
    snaptrade/
    ├── client.py    # SnaptradeClient (HMAC-signed httpx client)
    ├── secrets.py   # SecretBox (user secrets encrypted at rest)
    └── service.py   # SnaptradeService (registration, connection sync, import)

Activity and holdings normalization lives in services/trades/snaptrade.py.
"""

from tradeclarity.services.snaptrade.client import SnaptradeClient, sign_request
from tradeclarity.services.snaptrade.secrets import SecretBox, SecretDecryptionError
from tradeclarity.services.snaptrade.service import SnaptradeService

__all__ = [
    "SnaptradeClient",
    "SnaptradeService",
    "SecretBox",
    "SecretDecryptionError",
    "sign_request",
]
