"""
Inline hook request authentication.
"""

import hmac
from collections.abc import Mapping

from otp_hook.delivery.errors import AuthenticationError

AUTH_HEADER = "auth_secret"


def _header_value(headers: Mapping[str, str], name: str) -> str | None:
    # Only names are normalized; values are passed through untouched.
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class RequestAuthenticator:
    """Checks the shared secret sent by the identity provider.

    Header names are matched case-insensitively.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def authenticate(self, headers: Mapping[str, str]) -> None:
        presented = _header_value(headers, AUTH_HEADER)
        if (
            not self._secret
            or presented is None
            or not hmac.compare_digest(presented.encode("utf-8"), self._secret.encode("utf-8"))
        ):
            raise AuthenticationError("Authentication failed")
