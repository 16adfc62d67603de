"""
Script: publish_tools/build_identifier.py
What: Derives the nightly build identifier and the image tags built from it.
Doing: Formats the run date in the configured time zone, shortens the revision hash, and composes `<channel>-<YYYYMMDD>-<sha8>` tags.
Why: Every registry must receive the same tags for one run, so they all come from one computed value.
Goal: Export `BUILD_DATE`/`SHORT_SHA` for later steps and give the publisher one consistent tag set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from publish_tools.common import (
    ConfigurationError,
    optional_env,
    require_env,
    write_github_env,
    write_github_outputs,
)


SHORT_SHA_LENGTH = 8
DEFAULT_TIME_ZONE = "Asia/Shanghai"
HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
# Docker tag grammar is `[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}`; we keep channels lowercase.
CHANNEL_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
MAX_TAG_LENGTH = 128
BUILD_DATE_RE = re.compile(r"^[0-9]{8}$")


@dataclass(frozen=True)
class BuildIdentifier:
    date: str
    revision: str

    def __str__(self) -> str:
        return f"{self.date}-{self.revision}"


def resolve_time_zone(name: str) -> ZoneInfo:
    """Load an IANA time zone, turning lookup failures into a config error."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown time zone: {name!r}") from exc


def short_revision(revision_hash: str) -> str:
    """Return the first 8 characters of a revision hash, like `cut -c1-8`."""
    value = revision_hash.strip()
    if len(value) < SHORT_SHA_LENGTH:
        raise ConfigurationError(
            f"Revision hash must have at least {SHORT_SHA_LENGTH} characters, got {value!r}"
        )
    short = value[:SHORT_SHA_LENGTH]
    if not HEX_RE.match(short):
        raise ConfigurationError(f"Revision hash is not hexadecimal: {value!r}")
    return short


def derive_build_identifier(now: datetime, time_zone: str, revision_hash: str) -> BuildIdentifier:
    """
    Build the identifier for one run.

    `now` is converted into `time_zone` before formatting, so the date label
    follows the configured zone and not the scheduler's UTC clock. Example:
    a 20:10 UTC trigger on 2024-01-15 is already 2024-01-16 in Asia/Shanghai.
    A naive `now` is treated as UTC.
    """
    revision = short_revision(revision_hash)
    zone = resolve_time_zone(time_zone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    date = now.astimezone(zone).strftime("%Y%m%d")
    return BuildIdentifier(date=date, revision=revision)



def exported_build_identifier(build_date: str, short_sha: str, revision_hash: str) -> BuildIdentifier | None:
    """
    Rebuild the identifier a previous step exported as `BUILD_DATE`/`SHORT_SHA`.

    Returns None when neither value is set. Both values are checked the same
    way a freshly derived identifier is, and SHORT_SHA must match `revision_hash`.
    """
    if not build_date and not short_sha:
        return None
    if not build_date or not short_sha:
        raise ConfigurationError("BUILD_DATE and SHORT_SHA must be exported together")

    if not BUILD_DATE_RE.match(build_date):
        raise ConfigurationError(f"BUILD_DATE must be YYYYMMDD, got {build_date!r}")
    try:
        datetime.strptime(build_date, "%Y%m%d")
    except ValueError as exc:
        raise ConfigurationError(f"BUILD_DATE is not a calendar date: {build_date!r}") from exc

    revision = short_revision(revision_hash)
    if short_sha != revision:
        raise ConfigurationError(
            f"SHORT_SHA {short_sha!r} does not match revision {revision_hash!r}"
        )
    return BuildIdentifier(date=build_date, revision=revision)


def build_tags(channels: Iterable[str], build_id: BuildIdentifier) -> list[str]:
    """
    Compose one tag per channel label.

    Duplicate channels collapse to one tag and keep their first position.
    """
    tags: list[str] = []
    for channel in channels:
        if not CHANNEL_RE.match(channel):
            raise ConfigurationError(f"Invalid channel label for an image tag: {channel!r}")
        tag = f"{channel}-{build_id}"
        if len(tag) > MAX_TAG_LENGTH:
            raise ConfigurationError(f"Tag is longer than {MAX_TAG_LENGTH} characters: {tag}")
        if tag not in tags:
            tags.append(tag)
    if not tags:
        raise ConfigurationError("At least one publish channel is required")
    return tags


def parse_channels(raw: str) -> list[str]:
    """Split a comma-separated `PUBLISH_CHANNELS` value."""
    return [part.strip() for part in raw.split(",") if part.strip()]


def main() -> None:
    # GitHub sets `GITHUB_SHA` to the commit that triggered the run.
    revision_hash = require_env("GITHUB_SHA")
    time_zone = optional_env("BUILD_TIME_ZONE", DEFAULT_TIME_ZONE)

    build_id = derive_build_identifier(datetime.now(timezone.utc), time_zone, revision_hash)

    # Env names match the ones the old inline shell step exported.
    write_github_env({"BUILD_DATE": build_id.date, "SHORT_SHA": build_id.revision})
    write_github_outputs(
        {
            "build_date": build_id.date,
            "short_sha": build_id.revision,
            "build_id": str(build_id),
        }
    )
    print(f"Build date ({time_zone}): {build_id.date}")
    print(f"Short revision: {build_id.revision}")


if __name__ == "__main__":
    main()
