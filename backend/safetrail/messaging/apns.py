"""Arrival push delivery: Apple Push Notification service and a logging stand-in."""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import httpx
import jwt  # PyJWT

from ..config import settings

log = logging.getLogger(__name__)

APNS_PRODUCTION_HOST = "https://api.push.apple.com"
APNS_SANDBOX_HOST = "https://api.development.push.apple.com"

# Apple accepts a provider token for an hour; refresh well before that
PROVIDER_TOKEN_TTL = 50 * 60


@dataclass
class PushResult:
    ok: bool
    status: int
    detail: str

    def dict(self) -> dict[str, Any]:
        return asdict(self)


class PushSender(Protocol):
    async def send(self, device_token: str, title: str, body: str, data: dict | None = None) -> PushResult: ...
    async def close(self) -> None: ...


def build_alert_payload(title: str, body: str, data: dict | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "aps": {
            "alert": {"title": title, "body": body},
            "sound": "default",
            "thread-id": "safetrail",
        }
    }
    if data:
        payload["data"] = data
    return payload


def error_reason(response: httpx.Response) -> str:
    """APNs puts the failure reason in a JSON body; fall back to the raw text."""
    try:
        return response.json().get("reason", response.text)
    except ValueError:
        return response.text or "unknown error"


class DummyPush:
    async def send(self, device_token: str, title: str, body: str, data: dict | None = None) -> PushResult:
        log.info(f"[DUMMY PUSH] token={device_token} title={title!r} body={body!r} data={data}")
        return PushResult(ok=True, status=200, detail="dummy")

    async def close(self) -> None:
        return None


class APNsClient:
    """Token-authenticated APNs sender over HTTP/2."""

    def __init__(self, team_id: str, key_id: str, bundle_id: str, private_key: str, sandbox: bool = True):
        self.team_id = team_id
        self.key_id = key_id
        self.bundle_id = bundle_id
        self.private_key = private_key
        self.base_url = APNS_SANDBOX_HOST if sandbox else APNS_PRODUCTION_HOST
        self._client: httpx.AsyncClient | None = None
        self._token: str | None = None
        self._token_issued_at = 0
        log.info(f"[APNS] Sender ready for {bundle_id} ({'sandbox' if sandbox else 'production'})")

    @classmethod
    def from_settings(cls) -> APNsClient:
        return cls(
            team_id=settings.APNS_TEAM_ID,
            key_id=settings.APNS_KEY_ID,
            bundle_id=settings.APNS_BUNDLE_ID,
            private_key=settings.get_apns_private_key(),
            sandbox=settings.APNS_USE_SANDBOX,
        )

    def provider_token(self) -> str:
        now = int(time.time())
        if self._token is None or now - self._token_issued_at >= PROVIDER_TOKEN_TTL:
            self._token = jwt.encode(
                {"iss": self.team_id, "iat": now},
                self.private_key,
                algorithm="ES256",
                headers={"kid": self.key_id},
            )
            self._token_issued_at = now
            log.debug("[APNS] Signed new provider token")
        return self._token

    def http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(http2=True, timeout=10)
        return self._client

    async def send(self, device_token: str, title: str, body: str, data: dict | None = None) -> PushResult:
        response = await self.http_client().post(
            f"{self.base_url}/3/device/{device_token}",
            headers={
                "authorization": f"bearer {self.provider_token()}",
                "apns-topic": self.bundle_id,
                "apns-push-type": "alert",
                "apns-priority": "10",
            },
            json=build_alert_payload(title, body, data),
        )
        if response.is_success:
            return PushResult(ok=True, status=response.status_code, detail=response.headers.get("apns-id", "sent"))
        return PushResult(ok=False, status=response.status_code, detail=error_reason(response))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def get_push_sender() -> PushSender:
    if settings.PUSH_BACKEND.lower() == "apns":
        return APNsClient.from_settings()
    return DummyPush()
