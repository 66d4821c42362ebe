# src/routine_alerts/alerts/push.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from ..core.errors import PushSendError

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"


class AccessTokenSource(Protocol):
    """Where FcmPushSender gets its bearer token."""

    async def get_token(self) -> str: ...

    def invalidate(self) -> None: ...


class StaticAccessToken:
    """A fixed OAuth token from configuration. Never refreshed; it expires on its own."""

    def __init__(self, token: str) -> None:
        if not token or not token.strip():
            raise ValueError("access token is empty")
        self._token = token.strip()

    async def get_token(self) -> str:
        return self._token

    def invalidate(self) -> None:
        return


class ServiceAccountTokenSource:
    """
    OAuth tokens minted from a Firebase service account with google-auth.

    The token is refreshed whenever google-auth reports it invalid (missing,
    expired, or close to expiry), and after the provider answered 401.
    Refresh is a blocking HTTP call, so it runs in a worker thread.
    """

    def __init__(self, credentials: Any, *, request_factory: Callable[[], Any] = GoogleAuthRequest) -> None:
        self._credentials = credentials
        self._request_factory = request_factory
        self._lock = asyncio.Lock()
        self._force_refresh = False

    @classmethod
    def from_file(cls, path: str | Path) -> ServiceAccountTokenSource:
        creds = service_account.Credentials.from_service_account_file(str(path), scopes=[FCM_SCOPE])
        return cls(creds)

    @property
    def project_id(self) -> str | None:
        return getattr(self._credentials, "project_id", None)

    async def get_token(self) -> str:
        async with self._lock:
            if self._force_refresh or not self._credentials.valid:
                logger.debug("Refreshing FCM access token")
                await asyncio.to_thread(self._credentials.refresh, self._request_factory())
                self._force_refresh = False
            return str(self._credentials.token)

    def invalidate(self) -> None:
        self._force_refresh = True


class FcmPushSender:
    """
    Firebase Cloud Messaging (HTTP v1) sender.

    Bearer tokens come from an AccessTokenSource: a service account (refreshed
    as needed) or a static token override. Single attempt: any transport error,
    token failure or non-2xx status raises PushSendError.
    """

    def __init__(
        self,
        *,
        project_id: str,
        access_token: str | None = None,
        token_source: AccessTokenSource | None = None,
        base_url: str = "https://fcm.googleapis.com",
        timeout_seconds: float = 7.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if token_source is None and access_token:
            token_source = StaticAccessToken(access_token)
        if not project_id or token_source is None:
            raise RuntimeError(
                "FCM is not configured. Set ROUTINE_FIREBASE_SERVICE_ACCOUNT_PATH "
                "(or ROUTINE_FCM_PROJECT_ID and ROUTINE_FCM_ACCESS_TOKEN)."
            )
        self._url = f"{base_url.rstrip('/')}/v1/projects/{project_id}/messages:send"
        self._tokens = token_source
        self._timeout = float(timeout_seconds)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> FcmPushSender:
        """
        A static ROUTINE_FCM_ACCESS_TOKEN overrides the service account; otherwise
        the service account file provides tokens (and the project id if unset).
        """
        project_id = settings.fcm_project_id or ""
        token_source: AccessTokenSource | None = None

        if settings.fcm_access_token:
            token_source = StaticAccessToken(settings.fcm_access_token)
        elif settings.fcm_service_account_path:
            sa = ServiceAccountTokenSource.from_file(settings.fcm_service_account_path)
            project_id = project_id or sa.project_id or ""
            token_source = sa

        return cls(
            project_id=project_id,
            token_source=token_source,
            base_url=settings.fcm_base_url,
            timeout_seconds=settings.http_timeout_seconds,
            **kwargs,
        )

    async def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> None:
        payload = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                # FCM data values must be strings.
                "data": {str(k): str(v) for k, v in (data or {}).items()},
            }
        }

        try:
            access_token = await self._tokens.get_token()
        except Exception as e:
            raise PushSendError(f"cannot obtain FCM access token: {e.__class__.__name__}: {e}") from e
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise PushSendError(f"FCM request failed: {e.__class__.__name__}: {e}") from e

        if r.status_code == 401:
            self._tokens.invalidate()
        if r.status_code >= 300:
            raise PushSendError(f"FCM rejected message: HTTP {r.status_code} {r.text[:200]}")

        try:
            name = r.json().get("name")
        except (ValueError, AttributeError):
            name = None
        logger.info("FCM sent: %s", name or "(no message id)")


class LogPushSender:
    """
    Development sender used when no push provider is configured.

    It only writes the alert to the log and always "succeeds".
    """

    async def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> None:
        logger.warning(
            "ALERT (no push provider) task=%s token=%s... title=%r body=%r",
            (data or {}).get("taskId"),
            token[:8],
            title,
            body,
        )
