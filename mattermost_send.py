#!/usr/bin/env python3
"""Post on-call notifications to Mattermost and look up Mattermost users."""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import requests

logger = logging.getLogger(__name__)

WEBHOOK_ENV = "MATTERMOST_WEBHOOK_URL"
CARD_COLOR = "#ff0000"
NOBODY = "_nobody_"
UNRESOLVED = "(unresolved)"


class MattermostError(RuntimeError):
    pass


@dataclass
class ScheduleResult:
    display_name: str
    identities: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class NotificationPayload:
    title: str
    title_link: Optional[str]
    username: str
    icon_url: str
    schedules: List[ScheduleResult] = field(default_factory=list)

    def heading(self) -> str:
        if self.title_link:
            return f"### [{self.title}]({self.title_link})"
        return f"### {self.title}"


def _field_value(result: ScheduleResult) -> str:
    value = ", ".join(result.identities) or NOBODY
    if result.error:
        value = f"{value} {UNRESOLVED}"
    return value


def build_text_message(payload: NotificationPayload) -> Dict[str, Any]:
    lines = [payload.heading(), ""]
    for result in payload.schedules:
        value = _field_value(result)
        lines.append(f"**{result.display_name}**: {value}")
    return {
        "username": payload.username,
        "icon_url": payload.icon_url,
        "text": "\n".join(lines),
    }


def build_card_message(payload: NotificationPayload) -> Dict[str, Any]:
    fields = [
        {
            "title": result.display_name,
            "value": _field_value(result),
            "short": True,
        }
        for result in payload.schedules
    ]
    return {
        "username": payload.username,
        "icon_url": payload.icon_url,
        "text": payload.heading(),
        "attachments": [{"color": CARD_COLOR, "fields": fields}],
    }


def post_webhook(webhook_url: str, message: Dict[str, Any], timeout: float = 30) -> None:
    """Send a message to a Mattermost incoming webhook."""

    if not webhook_url:
        raise ValueError(f"No Mattermost webhook URL configured. Set {WEBHOOK_ENV} or pass --webhook.")

    try:
        response = requests.post(webhook_url, json=message, timeout=timeout)
    except requests.RequestException as exc:
        raise MattermostError(f"Could not reach the Mattermost webhook: {exc}") from exc
    if response.status_code >= 400:
        raise MattermostError(
            f"Failed to post on-call update to Mattermost (status {response.status_code}): {response.text}"
        )


def webhook_hook_id(webhook_url: str) -> str:
    """Return the hook id, i.e. the last path segment of an incoming webhook URL."""

    tail = urlparse(webhook_url).path.rstrip("/").split("/")[-1]
    if not tail:
        raise ValueError(f"Cannot find a hook id in webhook URL {webhook_url!r}")
    return tail


class MattermostClient:
    """Minimal Mattermost API v4 client authenticated with a personal access token."""

    def __init__(self, site_url: str, token: str, timeout: float = 30):
        if not site_url:
            raise ValueError("No Mattermost site URL provided (set siteurl in the config).")
        if not token:
            raise ValueError("No Mattermost API token provided (set MATTERMOST_API_KEY).")
        self.api_url = f"{site_url.rstrip('/')}/api/v4"
        self.token = token
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = requests.request(
                method,
                url,
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise MattermostError(f"Could not reach Mattermost at {self.api_url}: {exc}") from exc
        if response.status_code >= 400:
            raise MattermostError(f"Mattermost {method} {path} returned {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise MattermostError(
                f"Mattermost {method} {path} returned a non-JSON body: {response.text[:200]}"
            ) from exc

    def get_user_by_email(self, email: str) -> Dict[str, Any]:
        return self._request("GET", f"/users/email/{quote(email, safe='@')}")

    def resolve_identity(self, email: str) -> str:
        user = self.get_user_by_email(email)
        return f"@{user['username']}"

    def get_webhook_channel(self, webhook_url: str) -> str:
        hook = self._request("GET", f"/hooks/incoming/{webhook_hook_id(webhook_url)}")
        return hook["channel_id"]

    def add_channel_member(self, channel_id: str, user_id: str) -> None:
        self._request("POST", f"/channels/{channel_id}/members", json={"user_id": user_id})


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a single message to a Mattermost incoming webhook")
    parser.add_argument("text", nargs="?", default="Test message from the on-call notifier")
    parser.add_argument("--webhook", default=os.getenv(WEBHOOK_ENV), help=f"Webhook URL; defaults to {WEBHOOK_ENV} env")
    args = parser.parse_args()

    try:
        post_webhook(args.webhook, {"text": args.text})
    except (ValueError, MattermostError) as exc:
        raise SystemExit(str(exc))
    print("Message sent to Mattermost.")


if __name__ == "__main__":
    main()
