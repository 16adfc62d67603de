"""
Script: tests/test_build_identifier.py
What: Tests build identifier derivation and tag composition.
Doing: Checks date formatting across time zones, revision truncation rules, and channel tag building.
Why: A wrong date or short SHA silently publishes under the wrong tag in every registry.
Goal: Keep nightly tag names stable and predictable.
"""

from __future__ import annotations

import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock
from zoneinfo import ZoneInfo

from publish_tools import build_identifier
from publish_tools.build_identifier import (
    BuildIdentifier,
    build_tags,
    derive_build_identifier,
    exported_build_identifier,
    parse_channels,
    short_revision,
)
from publish_tools.common import ConfigurationError


SHANGHAI = ZoneInfo("Asia/Shanghai")


class DeriveBuildIdentifierTests(unittest.TestCase):
    def test_formats_date_and_short_revision(self) -> None:
        now = datetime(2024, 1, 15, 20, 10, tzinfo=SHANGHAI)
        build_id = derive_build_identifier(now, "Asia/Shanghai", "a1b2c3d4e5f6")
        self.assertEqual(build_id, BuildIdentifier(date="20240115", revision="a1b2c3d4"))
        self.assertEqual(str(build_id), "20240115-a1b2c3d4")

    def test_uses_configured_zone_not_trigger_zone(self) -> None:
        # The 20:10 UTC cron trigger is 04:10 the next day in Shanghai.
        now = datetime(2024, 1, 15, 20, 10, tzinfo=timezone.utc)
        build_id = derive_build_identifier(now, "Asia/Shanghai", "a1b2c3d4e5f6")
        self.assertEqual(build_id.date, "20240116")

        utc_id = derive_build_identifier(now, "UTC", "a1b2c3d4e5f6")
        self.assertEqual(utc_id.date, "20240115")

    def test_naive_datetime_is_treated_as_utc(self) -> None:
        naive = datetime(2024, 1, 15, 20, 10)
        aware = naive.replace(tzinfo=timezone.utc)
        self.assertEqual(
            derive_build_identifier(naive, "Asia/Shanghai", "a1b2c3d4e5f6"),
            derive_build_identifier(aware, "Asia/Shanghai", "a1b2c3d4e5f6"),
        )

    def test_is_deterministic(self) -> None:
        now = datetime(2023, 12, 31, 23, 59, tzinfo=timezone.utc)
        sha = "0123456789abcdef0123456789abcdef01234567"
        first = derive_build_identifier(now, "Asia/Shanghai", sha)
        second = derive_build_identifier(now, "Asia/Shanghai", sha)
        self.assertEqual(first, second)
        self.assertEqual(first.date, "20240101")

    def test_rejects_short_revision(self) -> None:
        now = datetime(2024, 1, 15, tzinfo=timezone.utc)
        with self.assertRaises(ConfigurationError):
            derive_build_identifier(now, "Asia/Shanghai", "a1b2c3d")
        with self.assertRaises(ConfigurationError):
            derive_build_identifier(now, "Asia/Shanghai", "")

    def test_rejects_unknown_time_zone(self) -> None:
        now = datetime(2024, 1, 15, tzinfo=timezone.utc)
        with self.assertRaises(ConfigurationError):
            derive_build_identifier(now, "Mars/Olympus_Mons", "a1b2c3d4e5f6")


class ShortRevisionTests(unittest.TestCase):
    def test_exactly_eight_characters_is_accepted(self) -> None:
        self.assertEqual(short_revision("deadbeef"), "deadbeef")

    def test_surrounding_whitespace_is_ignored(self) -> None:
        self.assertEqual(short_revision("  a1b2c3d4e5f6\n"), "a1b2c3d4")

    def test_rejects_non_hex_prefix(self) -> None:
        with self.assertRaises(ConfigurationError):
            short_revision("refs/heads/main")


class BuildTagsTests(unittest.TestCase):
    build_id = BuildIdentifier(date="20240115", revision="a1b2c3d4")

    def test_nightly_tag(self) -> None:
        self.assertEqual(build_tags(["nightly"], self.build_id), ["nightly-20240115-a1b2c3d4"])

    def test_multiple_channels_share_identifier(self) -> None:
        tags = build_tags(["nightly", "edge", "nightly"], self.build_id)
        self.assertEqual(tags, ["nightly-20240115-a1b2c3d4", "edge-20240115-a1b2c3d4"])

    def test_rejects_invalid_channel(self) -> None:
        with self.assertRaises(ConfigurationError):
            build_tags(["Nightly Build"], self.build_id)

    def test_rejects_empty_channel_list(self) -> None:
        with self.assertRaises(ConfigurationError):
            build_tags([], self.build_id)

    def test_parse_channels_drops_blanks(self) -> None:
        self.assertEqual(parse_channels(" nightly, ,edge ,"), ["nightly", "edge"])


class ExportedBuildIdentifierTests(unittest.TestCase):
    def test_returns_none_when_nothing_was_exported(self) -> None:
        self.assertIsNone(exported_build_identifier("", "", "a1b2c3d4e5f6"))

    def test_rebuilds_exported_identifier(self) -> None:
        build_id = exported_build_identifier("20240101", "a1b2c3d4", "a1b2c3d4e5f6")
        self.assertEqual(build_id, BuildIdentifier(date="20240101", revision="a1b2c3d4"))

    def test_requires_both_values(self) -> None:
        with self.assertRaises(ConfigurationError):
            exported_build_identifier("20240101", "", "a1b2c3d4e5f6")

    def test_rejects_bad_date(self) -> None:
        with self.assertRaises(ConfigurationError):
            exported_build_identifier("2024-01-01", "a1b2c3d4", "a1b2c3d4e5f6")
        with self.assertRaises(ConfigurationError):
            exported_build_identifier("20241301", "a1b2c3d4", "a1b2c3d4e5f6")

    def test_rejects_short_sha_for_other_revision(self) -> None:
        with self.assertRaises(ConfigurationError):
            exported_build_identifier("20240101", "ffffffff", "a1b2c3d4e5f6")


class MainTests(unittest.TestCase):
    def test_exports_build_date_and_short_sha(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            env_file = Path(temp_dir) / "env"
            output_file = Path(temp_dir) / "output"
            env = {
                "GITHUB_SHA": "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678",
                "BUILD_TIME_ZONE": "UTC",
                "GITHUB_ENV": str(env_file),
                "GITHUB_OUTPUT": str(output_file),
            }
            with mock.patch.dict(os.environ, env):
                build_identifier.main()

            env_text = env_file.read_text(encoding="utf-8")
            self.assertIn("SHORT_SHA=a1b2c3d4\n", env_text)
            self.assertRegex(env_text, r"BUILD_DATE=[0-9]{8}\n")
            self.assertIn("short_sha=a1b2c3d4", output_file.read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
