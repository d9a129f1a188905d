"""
Backend access for the conversation exporter.

Wraps the three calls the export pipeline makes against the ChatGPT web
backend: the auth session lookup, the conversation fetch, and the file
download URL lookup for images. All requests go through one shared
httpx.AsyncClient.
"""
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from config import get_access_token
from schemas import ConversationRecord

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_BASE_URL = "https://chatgpt.com"
DEFAULT_TIMEOUT = 30.0

SESSION_PATH = "/api/auth/session"
CONVERSATION_PATH = "/backend-api/conversation/{conversation_id}"
FILE_DOWNLOAD_PATH = "/backend-api/files/download/{file_id}"


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ExportError(Exception):
    """Base class for failures that abort an export."""
    pass


class AuthError(ExportError):
    """Raised when no access token is available or the backend rejects it."""
    pass


class TransportError(ExportError):
    """Raised when the backend returns a non-success response or cannot be reached."""
    pass


class StaleResultError(ExportError):
    """Raised when the active conversation changed while an export was running."""
    pass


# =============================================================================
# AUTH PROVIDER
# =============================================================================

class AuthProvider:
    """
    Supplies the bearer token for backend requests.

    A configured token wins; otherwise the session endpoint is asked once and
    the answer memoized until clear() is called.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str = DEFAULT_BASE_URL,
                 static_token: str | None = None):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._static_token = static_token
        self._token: str | None = None

    async def get_token(self) -> str | None:
        """Return the access token, or None when none can be obtained."""
        if self._token:
            return self._token
        if self._static_token:
            self._token = self._static_token
            return self._token

        try:
            response = await self._client.get(f"{self._base_url}{SESSION_PATH}")
            response.raise_for_status()
            session = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Could not retrieve access token: %s", e)
            self._token = None
            return None

        self._token = session.get("accessToken") if isinstance(session, dict) else None
        if not self._token:
            logger.error("Auth session response did not contain an access token")
        return self._token

    def clear(self) -> None:
        """Forget the memoized token so the next call asks again."""
        self._token = None
        self._static_token = None


# =============================================================================
# CONVERSATION FETCHER
# =============================================================================

def _auth_headers(token: str) -> dict[str, str]:
    return {
        "accept": "*/*",
        "authorization": f"Bearer {token}",
    }


async def fetch_conversation(
    client: httpx.AsyncClient,
    conversation_id: str,
    token: str,
    base_url: str = DEFAULT_BASE_URL
) -> ConversationRecord:
    """
    Fetch one conversation record from the backend.

    Args:
        client: Shared async HTTP client
        conversation_id: Conversation to fetch
        token: Bearer token from the AuthProvider
        base_url: Backend origin

    Returns:
        The parsed ConversationRecord

    Raises:
        AuthError: If the backend rejects the token (401/403)
        TransportError: On any other non-success response, connection
            failure, timeout or unparseable body
    """
    url = f"{base_url.rstrip('/')}{CONVERSATION_PATH.format(conversation_id=conversation_id)}"
    logger.info("Fetching conversation %s", conversation_id)

    try:
        response = await client.get(url, headers=_auth_headers(token))
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        if status in (401, 403):
            raise AuthError(f"Backend rejected access token: {status}")
        raise TransportError(f"Backend API request failed with status: {status}")
    except httpx.TimeoutException:
        raise TransportError(f"Request for conversation {conversation_id} timed out")
    except httpx.HTTPError as e:
        raise TransportError(f"Cannot reach backend at {base_url}: {e}")

    try:
        data: Any = response.json()
    except ValueError as e:
        raise TransportError(f"Failed to parse conversation JSON: {e}")

    if not isinstance(data, dict):
        raise TransportError(f"Unexpected conversation payload type: {type(data).__name__}")

    try:
        record = ConversationRecord.model_validate(data)
    except ValidationError as e:
        raise TransportError(f"Conversation payload did not match the expected shape: {e}")

    if not record.conversation_id:
        record.conversation_id = conversation_id
    return record


# =============================================================================
# IMAGE URL RESOLVER
# =============================================================================

class ImageUrlResolver:
    """Looks up short-lived download URLs for uploaded or generated images."""

    def __init__(self, client: httpx.AsyncClient, auth: AuthProvider,
                 base_url: str = DEFAULT_BASE_URL):
        self._client = client
        self._auth = auth
        self._base_url = base_url.rstrip("/")

    async def resolve_download_url(self, file_id: str, conversation_id: str) -> str | None:
        """Return the download URL for file_id, or None on any failure. Never raises."""
        try:
            token = await self._auth.get_token()
            if not token:
                raise AuthError("Access token not available for image download.")

            response = await self._client.get(
                f"{self._base_url}{FILE_DOWNLOAD_PATH.format(file_id=file_id)}",
                params={"conversation_id": conversation_id},
                headers=_auth_headers(token),
            )
            response.raise_for_status()
            return response.json().get("download_url")
        except Exception as e:
            logger.error("Failed to get image download URL for %s: %s", file_id, e)
            return None


# =============================================================================
# CLIENT BUNDLE
# =============================================================================

class BackendClient:
    """
    Owns the HTTP client and the collaborators built on it.

    Usage:
        async with BackendClient.from_config(config) as backend:
            token = await backend.auth.get_token()
            record = await backend.fetch_conversation(conv_id, token)
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, token: str | None = None,
                 timeout: float = DEFAULT_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self.auth = AuthProvider(self.client, self.base_url, static_token=token)
        self.images = ImageUrlResolver(self.client, self.auth, self.base_url)

    @classmethod
    def from_config(cls, config: dict, transport: httpx.AsyncBaseTransport | None = None) -> "BackendClient":
        return cls(
            base_url=config.get("base_url", DEFAULT_BASE_URL),
            token=get_access_token(config),
            timeout=config.get("request_timeout", DEFAULT_TIMEOUT),
            transport=transport,
        )

    async def fetch_conversation(self, conversation_id: str, token: str) -> ConversationRecord:
        return await fetch_conversation(self.client, conversation_id, token, self.base_url)

    async def resolve_download_url(self, file_id: str, conversation_id: str) -> str | None:
        return await self.images.resolve_download_url(file_id, conversation_id)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
