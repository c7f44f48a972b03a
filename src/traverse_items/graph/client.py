"""Microsoft Graph API client with MSAL authentication."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from urllib import request as urllib_request
from urllib.error import HTTPError

import msal

if TYPE_CHECKING:
    from traverse_items.config import AppConfig

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY_BASE_URL = "https://login.microsoftonline.com"

HTTP_TOO_MANY_REQUESTS = 429


class GraphAuthError(Exception):
    """Raised when MSAL token acquisition fails."""


class GraphApiError(Exception):
    """Raised when the Graph API returns a non-2xx response."""

    def __init__(self, status_code: int, message: str, retry_after: float | None = None) -> None:
        super().__init__(f"Graph API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == HTTP_TOO_MANY_REQUESTS


def relative_path(full_url: str) -> str:
    """Convert a full Graph API URL (e.g. an @odata.nextLink) to a relative path."""
    if full_url.startswith(GRAPH_BASE_URL):
        return full_url[len(GRAPH_BASE_URL) :]
    return full_url


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        # HTTP-date form is not used by Graph throttling responses.
        return None


class GraphClient:
    """Authenticated client for Microsoft Graph API."""

    def __init__(self, client_id: str, client_secret: str, tenant_id: str) -> None:
        """Initialise the MSAL confidential client application.

        Args:
            client_id: Azure AD application (client) ID.
            client_secret: Azure AD application client secret.
            tenant_id: Azure AD tenant ID.
        """
        authority = f"{AUTHORITY_BASE_URL}/{tenant_id}"
        self._app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=authority,
        )

    def _acquire_token(self) -> str:
        """Acquire a Bearer token using client credentials flow.

        MSAL keeps the token in its in-memory cache, so repeated calls only
        reach the identity platform when the cached token has expired.

        Returns:
            Access token string.

        Raises:
            GraphAuthError: If MSAL cannot acquire a token.
        """
        result: dict[str, Any] = self._app.acquire_token_for_client(scopes=GRAPH_SCOPES) or {}
        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            description = result.get("error_description", "No description provided")
            logger.error("[_acquire_token] MSAL token acquisition failed; error:%s", error)
            raise GraphAuthError(f"Token acquisition failed: {error} ({description})")
        return str(result["access_token"])

    def _send(self, req: urllib_request.Request) -> bytes:
        """Send a prepared request, mapping HTTP errors to GraphApiError."""
        try:
            with urllib_request.urlopen(req) as resp:
                return resp.read()  # type: ignore[no-any-return]
        except HTTPError as exc:
            raw = exc.read()
            try:
                detail = json.loads(raw).get("error", {}).get("message", exc.reason)
            except Exception:
                detail = exc.reason
            retry_after = _parse_retry_after(exc.headers.get("Retry-After") if exc.headers else None)
            raise GraphApiError(exc.code, detail, retry_after) from exc

    @staticmethod
    def _decode(body: bytes) -> dict[str, Any]:
        if not body:
            return {}
        return json.loads(body)  # type: ignore[no-any-return]

    def get(self, path: str) -> dict[str, Any]:
        """Perform an authenticated GET request to the Graph API.

        Args:
            path: URL path relative to BASE_URL (must start with '/').

        Returns:
            Parsed JSON response body as a dict.

        Raises:
            GraphAuthError: If token acquisition fails.
            GraphApiError: If the API returns a non-2xx status code.
        """
        token = self._acquire_token()
        req = urllib_request.Request(
            f"{GRAPH_BASE_URL}{path}",
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            method="GET",
        )
        return self._decode(self._send(req))

    def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Perform an authenticated POST request with a JSON body.

        Args:
            path: URL path relative to BASE_URL (must start with '/').
            body: JSON-serializable request body.

        Returns:
            Parsed JSON response body as a dict (empty for 204 responses).

        Raises:
            GraphAuthError: If token acquisition fails.
            GraphApiError: If the API returns a non-2xx status code.
        """
        token = self._acquire_token()
        req = urllib_request.Request(
            f"{GRAPH_BASE_URL}{path}",
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        return self._decode(self._send(req))

    def delete(self, path: str) -> None:
        """Perform an authenticated DELETE request.

        Args:
            path: URL path relative to BASE_URL (must start with '/').

        Raises:
            GraphAuthError: If token acquisition fails.
            GraphApiError: If the API returns a non-2xx status code.
        """
        token = self._acquire_token()
        req = urllib_request.Request(
            f"{GRAPH_BASE_URL}{path}",
            headers={"Authorization": f"Bearer {token}"},
            method="DELETE",
        )
        self._send(req)

    def put_content(
        self,
        path: str,
        content: bytes,
        content_type: str = "text/csv",
    ) -> dict[str, Any]:
        """Upload content in a single authenticated PUT request.

        Args:
            path: URL path relative to BASE_URL (must start with '/').
            content: Raw bytes to upload.
            content_type: MIME type for the Content-Type header.

        Returns:
            Parsed JSON response body (the created driveItem).

        Raises:
            GraphAuthError: If token acquisition fails.
            GraphApiError: If the API returns a non-2xx status code.
        """
        token = self._acquire_token()
        req = urllib_request.Request(
            f"{GRAPH_BASE_URL}{path}",
            data=content,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": content_type,
            },
            method="PUT",
        )
        return self._decode(self._send(req))

    def upload_chunk(self, upload_url: str, chunk: bytes, start: int, total: int) -> dict[str, Any]:
        """PUT one byte range to a pre-authenticated upload session URL.

        Upload session URLs carry their own authorization, so no bearer token
        is attached.

        Args:
            upload_url: Absolute URL returned by createUploadSession.
            chunk: Bytes for this range.
            start: Offset of the first byte of ``chunk`` within the file.
            total: Total file size in bytes.

        Returns:
            Parsed JSON response body (next expected ranges, or the driveItem
            once the final chunk is accepted).
        """
        end = start + len(chunk) - 1
        req = urllib_request.Request(
            upload_url,
            data=chunk,
            headers={
                "Content-Length": str(len(chunk)),
                "Content-Range": f"bytes {start}-{end}/{total}",
            },
            method="PUT",
        )
        return self._decode(self._send(req))


def graph_client_from_config(config: AppConfig) -> GraphClient:
    """Construct a GraphClient from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured GraphClient instance.
    """
    return GraphClient(
        client_id=config.client_id,
        client_secret=config.client_secret,
        tenant_id=config.tenant_id,
    )
