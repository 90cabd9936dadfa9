"""Credential subsystem.

Components, leaves first:

- :class:`~warden.auth.store.TokenStore` -- durable token file.
- :class:`~warden.auth.device.DeviceAuthorizer` -- RFC 8628 device flow.
- :class:`~warden.auth.refresher.TokenRefresher` -- refresh and aging.
- :class:`~warden.auth.session.SessionExchanger` -- OAuth to game session.
- :class:`~warden.auth.manager.CredentialManager` -- orchestration.
"""

from warden.auth.device import DeviceAuthorizer
from warden.auth.manager import CredentialManager
from warden.auth.refresher import TokenRefresher
from warden.auth.session import SessionExchanger
from warden.auth.store import TokenStore

__all__ = [
    "CredentialManager",
    "DeviceAuthorizer",
    "SessionExchanger",
    "TokenRefresher",
    "TokenStore",
]
