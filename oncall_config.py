"""Load and validate the notifier configuration and credentials."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from participants import ResolutionMode

OPSGENIE_KEY_ENV = "OPSGENIE_API_KEY"
MATTERMOST_KEY_ENV = "MATTERMOST_API_KEY"
WEBHOOK_ENV = "MATTERMOST_WEBHOOK_URL"

DEFAULT_TITLES = (
    ":rotating_light: Who is on Call this week :rotating_light:",
    "Heads up for next week on call rotation:",
)
DEFAULT_TITLE_LINK = "https://www.mattermost.com"
DEFAULT_USERNAME = "On-call little helper"
DEFAULT_ICON_URL = "https://upload.wikimedia.org/wikipedia/commons/0/01/Creative-Tail-People-superman.svg"


class MessageFormat(str, Enum):
    TEXT = "text"
    CARD = "card"


class ConfigError(ValueError):
    """Every problem found while validating settings, reported together."""

    def __init__(self, problems: Sequence[str]):
        self.problems = list(problems)
        super().__init__("Invalid configuration:\n" + "\n".join(f"  - {problem}" for problem in self.problems))


@dataclass(frozen=True)
class Settings:
    opsgenie_api_key: str
    mattermost_api_key: str
    webhook_url: str


@dataclass
class Config:
    schedules: Dict[str, str]
    site_url: str
    titles: List[str] = field(default_factory=list)
    title_links: List[str] = field(default_factory=list)
    username: str = DEFAULT_USERNAME
    icon_url: str = DEFAULT_ICON_URL
    opsgenie_url: Optional[str] = None
    resolution: ResolutionMode = ResolutionMode.LOOKUP
    message_format: MessageFormat = MessageFormat.CARD
    aliases: Dict[str, str] = field(default_factory=dict)
    per_schedule: bool = False
    subscribe: bool = False

    def title_for(self, this_week: bool) -> str:
        index = 0 if this_week else 1
        if len(self.titles) > index:
            return self.titles[index]
        return DEFAULT_TITLES[index]

    def title_link_for(self, this_week: bool) -> str:
        index = 0 if this_week else 1
        if len(self.title_links) > index:
            return self.title_links[index]
        return DEFAULT_TITLE_LINK


def _settings_problems(environ: Mapping[str, str]) -> List[str]:
    return [
        f"{name} environment variable not set."
        for name in (OPSGENIE_KEY_ENV, MATTERMOST_KEY_ENV, WEBHOOK_ENV)
        if not environ.get(name, "").strip()
    ]


def settings_from_env(environ: Mapping[str, str]) -> Settings:
    problems = _settings_problems(environ)
    if problems:
        raise ConfigError(problems)
    return _build_settings(environ)


def _build_settings(environ: Mapping[str, str]) -> Settings:
    return Settings(
        opsgenie_api_key=environ[OPSGENIE_KEY_ENV].strip(),
        mattermost_api_key=environ[MATTERMOST_KEY_ENV].strip(),
        webhook_url=environ[WEBHOOK_ENV].strip(),
    )


def _string_list(data: Mapping[str, Any], key: str, problems: List[str]) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        problems.append(f"'{key}' must be a list of strings.")
        return []
    if len(value) > 2:
        problems.append(f"'{key}' takes at most two entries (this week, next week).")
    return value


def _string_map(data: Mapping[str, Any], key: str, problems: List[str]) -> Dict[str, str]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        problems.append(f"'{key}' must map strings to strings.")
        return {}
    return dict(value)


def _enum_value(data: Mapping[str, Any], key: str, enum_type: Any, default: Any, problems: List[str]) -> Any:
    value = data.get(key)
    if value is None:
        return default
    try:
        return enum_type(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        problems.append(f"'{key}' must be one of: {choices} (got {value!r}).")
        return default


def _flag(data: Mapping[str, Any], key: str, problems: List[str]) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        problems.append(f"'{key}' must be true or false.")
        return False
    return value


def _config_problems(data: Any) -> Tuple[Optional[Config], List[str]]:
    problems: List[str] = []
    if not isinstance(data, dict):
        return None, ["The configuration document must be a JSON object."]

    schedules = _string_map(data, "schedules", problems)
    if "schedules" not in data or (isinstance(data["schedules"], dict) and not schedules):
        problems.append("'schedules' must list at least one Opsgenie schedule.")

    site_url = data.get("siteurl")
    if not isinstance(site_url, str) or not site_url.strip():
        problems.append("Site Url not set in the config ('siteurl').")
        site_url = ""

    opsgenie_url = data.get("opsgenieurl")
    if opsgenie_url is not None and not isinstance(opsgenie_url, str):
        problems.append("'opsgenieurl' must be a string.")
        opsgenie_url = None

    username = data.get("username") or DEFAULT_USERNAME
    icon_url = data.get("iconurl") or DEFAULT_ICON_URL
    if not isinstance(username, str) or not isinstance(icon_url, str):
        problems.append("'username' and 'iconurl' must be strings.")

    config = Config(
        schedules=schedules,
        site_url=site_url.strip(),
        titles=_string_list(data, "title", problems),
        title_links=_string_list(data, "titleLink", problems),
        username=username,
        icon_url=icon_url,
        opsgenie_url=opsgenie_url,
        resolution=_enum_value(data, "resolution", ResolutionMode, ResolutionMode.LOOKUP, problems),
        message_format=_enum_value(data, "format", MessageFormat, MessageFormat.CARD, problems),
        aliases=_string_map(data, "aliases", problems),
        per_schedule=_flag(data, "perSchedule", problems),
        subscribe=_flag(data, "subscribe", problems),
    )
    return config, problems


def parse_config(data: Any) -> Config:
    config, problems = _config_problems(data)
    if problems:
        raise ConfigError(problems)
    return config


def _read_config_document(path: Path, problems: List[str]) -> Any:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except OSError as exc:
        problems.append(f"Error reading {path}: {exc}")
    except json.JSONDecodeError as exc:
        problems.append(f"Error parsing {path}: {exc}")
    return None


def load_setup(path: Path, environ: Mapping[str, str]) -> Tuple[Settings, Config]:
    """Validate credentials and the config file in one pass.

    Returns ``(settings, config)``; raises ``ConfigError`` listing every
    missing or invalid value when anything is wrong.
    """

    problems = _settings_problems(environ)
    checked = len(problems)
    data = _read_config_document(path, problems)
    config = None
    if len(problems) == checked:
        config, config_problems = _config_problems(data)
        problems.extend(config_problems)
    if problems:
        raise ConfigError(problems)
    return _build_settings(environ), config
