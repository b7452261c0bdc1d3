"""
Twikoo export client.

Fetches the full comment export from a Twikoo backend through its admin
event API. Twikoo authenticates admin events with the MD5 hex digest of the
admin password, sent as ``accessToken``.
"""

import hashlib
import logging
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

EXPORT_EVENT = 'COMMENT_EXPORT_FOR_ADMIN'
EXPORT_COLLECTION = 'comment'


class RemoteExportError(Exception):
    """Base class for failures talking to the Twikoo backend."""

    retryable = False


class TransportError(RemoteExportError):
    """Raised when the request never produced a response (DNS, connect, timeout)."""

    retryable = True


class RemoteHttpError(RemoteExportError):
    """Raised when the backend answers with a non-success HTTP status."""

    retryable = True

    def __init__(self, status_code: int, reason: str, body: str):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"Twikoo HTTP error: {status_code} {reason} body: {body}")


class MalformedResponseError(RemoteExportError):
    """Raised when the response body is not the expected JSON envelope."""

    def __init__(self, body: str, detail: str = 'response is not a JSON object'):
        self.body = body
        self.detail = detail
        super().__init__(f"Twikoo response malformed ({detail}), body: {body}")


class RemoteApiError(RemoteExportError):
    """Raised when the backend reports a non-zero result code."""

    def __init__(self, code: int, message: Optional[str]):
        self.code = code
        self.message = message
        super().__init__(f"Twikoo API error: code={code}, message={message}")


def derive_access_token(password: str) -> str:
    """
    Derive the Twikoo access token from the admin password.

    Args:
        password: Plaintext admin password

    Returns:
        Lowercase MD5 hex digest of the UTF-8 password
    """
    return hashlib.md5(password.encode('utf-8')).hexdigest()


class TwikooClient:
    """
    Client for the Twikoo admin export event.

    Every call to export_comments() is a fresh request; retries belong to the
    caller.
    """

    def __init__(self, base_url: str, password: str, timeout: float = 30,
                 session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            base_url: Twikoo endpoint URL
            password: Twikoo admin password (hashed before use)
            timeout: Request timeout in seconds
            session: Optional requests session (a new one is created otherwise)
        """
        if not base_url:
            raise ValueError("Twikoo URL is not configured")
        self.base_url = base_url
        self.access_token = derive_access_token(password or '')
        self.timeout = timeout
        self.session = session or requests.Session()

    def export_comments(self) -> Any:
        """
        Fetch the full comment export.

        Returns:
            The ``data`` field of the backend response, unchanged

        Raises:
            TransportError: If the request fails before a response arrives
            RemoteHttpError: If the HTTP status is not a success
            MalformedResponseError: If the body is not the expected envelope
            RemoteApiError: If the backend reports a non-zero code
        """
        body = {
            'accessToken': self.access_token,
            'collection': EXPORT_COLLECTION,
            'event': EXPORT_EVENT,
        }

        try:
            response = self.session.post(self.base_url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to Twikoo failed: {e}") from e

        if not response.ok:
            raise RemoteHttpError(response.status_code, response.reason, response.text)

        try:
            envelope = response.json()
        except ValueError:
            raise MalformedResponseError(response.text, 'response is not JSON')

        code = self._check_envelope(envelope, response.text)
        if code != 0:
            raise RemoteApiError(code, envelope.get('message'))

        data = envelope['data']
        logger.debug(f"Fetched Twikoo export ({len(response.content)} bytes)")
        return data

    @staticmethod
    def _check_envelope(envelope: Any, raw: str) -> int:
        """Validate the ``{code, message, data}`` envelope and return its code."""
        if not isinstance(envelope, dict):
            raise MalformedResponseError(raw)

        code = envelope.get('code')
        if isinstance(code, bool) or not isinstance(code, int):
            raise MalformedResponseError(raw, 'missing integer "code" field')

        if code == 0 and 'data' not in envelope:
            raise MalformedResponseError(raw, 'missing "data" field')

        return code
