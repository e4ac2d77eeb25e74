"""Push delivery over the relay (Expo push API) and the gateway (FCM).

Relay-shaped tokens go straight to the relay. Anything else goes to the
gateway first; when the gateway says the token is not a valid registration
token, the same message is retried once through the relay. ``send`` never
raises: every outcome comes back as a ``PushResult``.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import firebase_admin
import httpx
from firebase_admin import credentials, messaging

from heartsense.background import run_sync
from heartsense.settings.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "HeartSense"
DEFAULT_BODY = "You have a new notification."
TOKEN_LOG_PREFIX = 12

_RELAY_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")


@dataclass(slots=True)
class PushResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class PushTransport(Protocol):
    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> PushResult:
        ...


def is_relay_token(token: str) -> bool:
    # wrapped or prefixed relay tokens count too
    return token.startswith(_RELAY_PREFIXES) or "ExponentPushToken" in token


def token_prefix(token: str) -> str:
    return (token or "")[:TOKEN_LOG_PREFIX]


def is_token_rejection(exc: BaseException) -> bool:
    """True when the gateway refused the token itself rather than failing transiently."""
    if isinstance(exc, (messaging.UnregisteredError, messaging.SenderIdMismatchError)):
        return True
    msg = str(exc).lower()
    return "registration token" in msg and ("invalid" in msg or "not a valid" in msg)


# ---------------------------
# Relay (Expo push API)
# ---------------------------
class RelayTransport:
    def __init__(self, url: str | None = None, *, timeout: float | None = None,
                 client: httpx.AsyncClient | None = None):
        self.url = url or settings.PUSH_RELAY_URL
        self.timeout = timeout if timeout is not None else settings.PUSH_RELAY_TIMEOUT
        self._client = client

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._client is not None:
            return await self._client.post(self.url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=payload, headers=headers)

    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> PushResult:
        payload: dict[str, Any] = {"to": token, "title": title, "body": body, "sound": "default"}
        if data:
            payload["data"] = data
        try:
            r = await self._post(payload)
            try:
                res = r.json() or {}
            except ValueError:
                res = {}
        except httpx.HTTPError as e:
            logger.error("relay push error for %s: %s", token_prefix(token), e)
            return PushResult(False, error=str(e))

        errors = res.get("errors") or []
        if r.status_code >= 400 or errors:
            msg = (errors[0] or {}).get("message") if errors else None
            logger.warning("relay push failed for %s: status=%s", token_prefix(token), r.status_code)
            return PushResult(False, error=msg or f"relay HTTP {r.status_code}")

        tickets = res.get("data")
        ticket = (tickets[0] if isinstance(tickets, list) and tickets else tickets) or {}
        if ticket.get("status") == "error":
            return PushResult(False, error=ticket.get("message") or "relay ticket error")
        return PushResult(True, message_id=ticket.get("id") or ticket.get("status") or "relay-sent")


# ---------------------------
# Gateway (FCM via firebase-admin)
# ---------------------------
def _firebase_app() -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS) if settings.FIREBASE_CREDENTIALS else None
        return firebase_admin.initialize_app(cred)


class GatewayTransport:
    """Raises on failure; the dispatcher decides whether the error is a token rejection."""

    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> PushResult:
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in (data or {}).items()},
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(title=title, body=body),
            ),
            apns=messaging.APNSConfig(payload=messaging.APNSPayload(aps=messaging.Aps(sound="default"))),
        )
        message_id = await run_sync(messaging.send, message, app=_firebase_app())
        return PushResult(True, message_id=message_id)


class DummyGateway:
    """Log-only gateway for local runs without Firebase credentials."""

    def __init__(self):
        self._ids = itertools.count(1)

    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> PushResult:
        logger.info("[dummy push] %s: %s", token_prefix(token), title)
        return PushResult(True, message_id=f"dummy-{next(self._ids)}")


# ---------------------------
# Dispatcher
# ---------------------------
class NotificationDispatcher:
    def __init__(self, relay: PushTransport, gateway: PushTransport):
        self.relay = relay
        self.gateway = gateway

    async def _via_relay(self, token: str, title: str, body: str, data) -> PushResult:
        try:
            return await self.relay.send(token, title, body, data)
        except Exception as e:  # noqa: BLE001
            logger.exception("relay transport raised for %s", token_prefix(token))
            return PushResult(False, error=str(e))

    async def send(self, token: str | None, title: str | None, body: str | None,
                   data: Optional[dict[str, Any]] = None) -> PushResult:
        token = (token or "").strip()
        if not token:
            logger.warning("push skipped: missing token")
            return PushResult(False, error="Missing or invalid token")
        title = (title or "").strip() or DEFAULT_TITLE
        body = (body or "").strip() or DEFAULT_BODY
        prefix = token_prefix(token)
        relay = is_relay_token(token)
        logger.info("push: token=%s len=%s relay=%s", prefix, len(token), relay)

        if relay:
            result = await self._via_relay(token, title, body, data)
            if result.success:
                logger.info("push sent via relay to %s: %s", prefix, result.message_id)
            return result

        try:
            result = await self.gateway.send(token, title, body, data)
        except Exception as e:  # noqa: BLE001
            if not is_token_rejection(e):
                logger.error("gateway push failed for %s: %s", prefix, e)
                return PushResult(False, error=str(e))
            logger.warning("gateway rejected token %s, retrying via relay", prefix)
            fallback = await self._via_relay(token, title, body, data)
            if fallback.success:
                logger.info("push sent via relay (fallback) to %s: %s", prefix, fallback.message_id)
                return fallback
            return PushResult(False, error=f"gateway: {e}. relay fallback: {fallback.error}")

        logger.info("push sent via gateway to %s: %s", prefix, result.message_id)
        return result


_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        gateway: PushTransport = DummyGateway() if settings.PUSH_GATEWAY == "dummy" else GatewayTransport()
        _dispatcher = NotificationDispatcher(RelayTransport(), gateway)
    return _dispatcher


__all__ = [
    "PushResult",
    "RelayTransport",
    "GatewayTransport",
    "DummyGateway",
    "NotificationDispatcher",
    "get_dispatcher",
    "is_relay_token",
]
