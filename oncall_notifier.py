#!/usr/bin/env python3
"""Tell a Mattermost channel who is on call this week (or next week) in Opsgenie."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from oncall_config import Config, ConfigError, MessageFormat, Settings, load_setup
from mattermost_send import (
    MattermostClient,
    MattermostError,
    NotificationPayload,
    ScheduleResult,
    build_card_message,
    build_text_message,
    post_webhook,
)
from opsgenie_client import OpsgenieClient, OpsgenieError
from participants import ResolutionMode, resolve_participants
from shift_window import ShiftWindow, shift_window

logger = logging.getLogger(__name__)

CONFIG_ENV = "ONCALL_NOTIFIER_CONFIG"
DEFAULT_CONFIG_PATH = Path("config.json")

Sender = Callable[[str, Dict[str, Any]], None]


class Scheduler(Protocol):
    def get_on_call(self, schedule_name: str, instant: datetime) -> List[str]: ...


def _query_shift(scheduler: Scheduler, schedule_name: str, instant: datetime, label: str) -> List[str]:
    try:
        return scheduler.get_on_call(schedule_name, instant)
    except OpsgenieError as exc:
        logger.warning("Error trying to get the %s shift for %s: %s", label, schedule_name, exc)
        return []


def collect_schedule(
    schedule_name: str,
    display_name: str,
    window: ShiftWindow,
    scheduler: Scheduler,
    config: Config,
    lookup: Optional[Callable[[str], str]] = None,
) -> ScheduleResult:
    """Resolve who is on call for one schedule across both shifts of the window."""

    early = _query_shift(scheduler, schedule_name, window.early, "early")
    late = _query_shift(scheduler, schedule_name, window.late, "late")

    resolution = resolve_participants(
        early,
        late,
        config.resolution,
        aliases=config.aliases,
        lookup=lookup,
    )
    result = ScheduleResult(display_name=display_name, identities=resolution.identities)
    if resolution.all_failed:
        result.error = (
            f"Could not resolve any of the {resolution.attempted} on-call users of "
            f"{display_name} in Mattermost; showing raw identifiers."
        )
        logger.error(result.error)
    elif resolution.failures:
        logger.warning(
            "%d of %d on-call users of %s could not be resolved in Mattermost.",
            resolution.failures,
            resolution.attempted,
            display_name,
        )
    return result


def build_payload(config: Config, this_week: bool, results: List[ScheduleResult]) -> NotificationPayload:
    return NotificationPayload(
        title=config.title_for(this_week),
        title_link=config.title_link_for(this_week),
        username=config.username,
        icon_url=config.icon_url,
        schedules=results,
    )


def render_messages(config: Config, payload: NotificationPayload) -> List[Dict[str, Any]]:
    """Render the payload as one message, or as one message per schedule."""

    render = build_card_message if config.message_format is MessageFormat.CARD else build_text_message
    if not config.per_schedule:
        return [render(payload)]
    return [
        render(
            NotificationPayload(
                title=payload.title,
                title_link=payload.title_link,
                username=payload.username,
                icon_url=payload.icon_url,
                schedules=[result],
            )
        )
        for result in payload.schedules
    ]


def subscribe_users(chat: MattermostClient, webhook_url: str, user_ids: List[str]) -> None:
    """Add the resolved on-call users to the channel behind the webhook."""

    if not user_ids:
        return
    try:
        channel_id = chat.get_webhook_channel(webhook_url)
    except (MattermostError, ValueError, KeyError) as exc:
        logger.warning("Could not find the channel of the webhook; skipping subscription: %s", exc)
        return

    for user_id in dict.fromkeys(user_ids):
        try:
            chat.add_channel_member(channel_id, user_id)
        except MattermostError as exc:
            logger.warning("Could not add user %s to channel %s: %s", user_id, channel_id, exc)
        else:
            logger.debug("Added user %s to channel %s", user_id, channel_id)


def run(
    settings: Settings,
    config: Config,
    this_week: bool = True,
    now: Optional[datetime] = None,
    dry_run: bool = False,
    scheduler: Optional[Scheduler] = None,
    chat: Optional[MattermostClient] = None,
    sender: Sender = post_webhook,
) -> int:
    """Run the notifier once and return the process exit status."""

    try:
        if scheduler is None:
            scheduler = OpsgenieClient(settings.opsgenie_api_key, base_url=config.opsgenie_url)
        if chat is None:
            chat = MattermostClient(config.site_url, settings.mattermost_api_key)
    except ValueError as exc:
        raise ConfigError([f"Not able to create a client: {exc}"]) from exc

    window = shift_window(now, this_week)
    logger.info(
        "Looking up %s's on-call rotation (early %s, late %s)",
        "this week" if this_week else "next week",
        window.early.isoformat(),
        window.late.isoformat(),
    )

    subscribe = config.subscribe and config.resolution is ResolutionMode.LOOKUP
    user_ids: List[str] = []

    def lookup_and_remember(email: str) -> str:
        user = chat.get_user_by_email(email)
        user_ids.append(user["id"])
        return f"@{user['username']}"

    lookup = lookup_and_remember if subscribe else chat.resolve_identity

    results = []
    for schedule_name, display_name in config.schedules.items():
        results.append(
            collect_schedule(
                schedule_name,
                display_name,
                window,
                scheduler,
                config,
                lookup=lookup if config.resolution is ResolutionMode.LOOKUP else None,
            )
        )

    payload = build_payload(config, this_week, results)
    messages = render_messages(config, payload)

    if dry_run:
        for message in messages:
            print(json.dumps(message, indent=2))
        return 0

    if subscribe:
        subscribe_users(chat, settings.webhook_url, user_ids)

    failed = 0
    for message in messages:
        try:
            sender(settings.webhook_url, message)
        except MattermostError as exc:
            logger.error("Error sending webhook: %s", exc)
            failed += 1

    if failed:
        return 1
    print("Successfully sent on-call users to Mattermost channel.")
    return 0


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    environ = os.environ if environ is None else environ
    parser = argparse.ArgumentParser(description="Post who is on call in Opsgenie to a Mattermost channel.")
    parser.add_argument(
        "--next-week",
        action="store_true",
        help="Query users who will be on-call next week (default: this week).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(environ.get(CONFIG_ENV, str(DEFAULT_CONFIG_PATH))),
        help=f"Path to the JSON configuration file (default: %(default)s, or {CONFIG_ENV} env).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve the rotation and print the message without posting it.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings, config = load_setup(args.config, environ)
        return run(settings, config, this_week=not args.next_week, dry_run=args.dry_run)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
