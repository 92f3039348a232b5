from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


class _NoOpPushClient:
    """
    Safe default client:
    - Never hits the network.
    - Always 'succeeds' and logs the message.
    """
    enabled = False

    def send(self, *, token: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> bool:
        logger.info("[Push:DISABLED] %s: %s (%s)", title, body, token)
        return True


class _ExpoPushClient:
    """
    Minimal Expo push client:
    - One HTTP call per device token.
    - Optional access token for projects with enhanced push security.
    """
    def __init__(self) -> None:
        self.url = getattr(settings, "EXPO_PUSH_URL", EXPO_PUSH_URL)
        self.access_token = getattr(settings, "EXPO_ACCESS_TOKEN", None)
        self.enabled = True
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})
        if self.access_token:
            self.session.headers["Authorization"] = f"Bearer {self.access_token}"

    def send(self, *, token: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> bool:
        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": data or {},
        }
        try:
            r = self.session.post(self.url, json=message, timeout=15)
        except requests.RequestException as exc:
            logger.warning("Push request failed: %s", exc)
            return False

        if r.status_code != 200:
            logger.warning("Push send failed: %s %s", r.status_code, r.text)
            return False

        try:
            payload = r.json() or {}
        except ValueError:
            logger.warning("Push response was not JSON: %s", r.text[:200])
            return False

        ticket = payload.get("data") if isinstance(payload, dict) else None
        if isinstance(ticket, list):
            ticket = ticket[0] if ticket else {}
        if not isinstance(ticket, dict):
            logger.warning("Unexpected push response for %s: %r", token, payload)
            return False
        if ticket.get("status") == "error":
            logger.warning("Push rejected for %s: %s", token, ticket.get("message"))
            return False
        return True


# ----- Public API --------------------------------------------------------------

_client_singleton = None


def _push_globally_enabled() -> bool:
    return bool(getattr(settings, "PUSH_ENABLED", False))


def get_push_client():
    """
    Returns a client exposing .send(token=, title=, body=, data=None) -> bool.
    - If globally disabled, returns a no-op client.
    """
    global _client_singleton
    if _client_singleton is not None:
        return _client_singleton

    if _push_globally_enabled():
        _client_singleton = _ExpoPushClient()
    else:
        _client_singleton = _NoOpPushClient()
    return _client_singleton


def reset_push_client() -> None:
    """Forget the cached client (settings changed, tests)."""
    global _client_singleton
    _client_singleton = None


__all__ = ["get_push_client", "reset_push_client"]
