"""Query Opsgenie for who is on call on a schedule at a given instant."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.opsgenie.com"


class OpsgenieError(RuntimeError):
    pass


class OpsgenieClient:
    def __init__(self, api_key: str, base_url: Optional[str] = None, timeout: float = 30):
        if not api_key:
            raise ValueError("No Opsgenie API key provided (set OPSGENIE_API_KEY).")
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout

    def get_on_call(self, schedule_name: str, instant: datetime) -> List[str]:
        """Return the flattened list of recipients on call at ``instant``."""

        endpoint = f"{self.base_url}/v2/schedules/{quote(schedule_name, safe='')}/on-calls"
        params = {
            "scheduleIdentifierType": "name",
            "flat": "true",
            "date": instant.isoformat(),
        }
        logger.debug("Querying %s at %s", schedule_name, params["date"])

        try:
            response = requests.get(
                endpoint,
                headers={"Authorization": f"GenieKey {self.api_key}"},
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OpsgenieError(f"Could not reach Opsgenie for schedule {schedule_name}: {exc}") from exc

        if response.status_code >= 400:
            raise OpsgenieError(
                f"Failed to get on-call for schedule {schedule_name} "
                f"(status {response.status_code}): {response.text}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise OpsgenieError(
                f"Opsgenie returned a non-JSON body for schedule {schedule_name} "
                f"(status {response.status_code}): {response.text[:200]}"
            ) from exc
        return _extract_recipients(body)


def _extract_recipients(body: Any) -> List[str]:
    if not isinstance(body, dict):
        return []
    data: Dict[str, Any] = body.get("data") or {}
    recipients = data.get("onCallRecipients") or []
    return [recipient for recipient in recipients if isinstance(recipient, str)]
