"""
Script: publish_tools/common.py
What: Shared helper functions used by all `publish_tools` modules.
Doing: Wraps env reads, command execution, skopeo login/copy calls, and GitHub Actions file writes.
Why: Avoids duplicated helper code.
Goal: Keep behavior consistent across all helper modules.
"""

from __future__ import annotations

import os
import subprocess
from typing import Mapping, Sequence


class PublishToolError(RuntimeError):
    """Raised when a workflow helper script hits a known error condition."""


class ConfigurationError(PublishToolError):
    """Run cannot start: bad revision hash, bad time zone, no destinations, bad config file."""


class AuthError(PublishToolError):
    """Login to one registry destination failed."""


class PushError(PublishToolError):
    """
    Pushing to one registry destination failed.

    `digests` holds the tags that were already pushed before the failure.
    """

    def __init__(self, message: str, digests: Mapping[str, str] | None = None) -> None:
        super().__init__(message)
        self.digests = dict(digests or {})


class AggregateFailure(PublishToolError):
    """At least one destination failed during a publish run."""

    def __init__(self, message: str, results: Sequence[object] = ()) -> None:
        super().__init__(message)
        self.results = list(results)


def require_env(name: str) -> str:
    """Return a required environment variable or raise a clear error."""
    value = os.environ.get(name)
    if value is None or value == "":
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def optional_env(name: str, default: str = "") -> str:
    """Return an environment variable with a fallback default."""
    return os.environ.get(name, default)


def run_cmd(
    args: Sequence[str],
    *,
    capture_output: bool = True,
    cwd: str | None = None,
    input_text: str | None = None,
) -> str:
    """
    Run a command and return stdout, raising a readable error on failure.

    Secrets must go through `input_text` (stdin). Arguments are echoed in the
    error message, stdin is not.
    """
    try:
        result = subprocess.run(
            list(args),
            check=True,
            text=True,
            capture_output=capture_output,
            cwd=cwd,
            input=input_text,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        stdout = (exc.stdout or "").strip()
        details = stderr or stdout or str(exc)
        raise PublishToolError(f"Command failed: {' '.join(args)}\n{details}") from exc
    except FileNotFoundError as exc:
        raise PublishToolError(f"Command not found: {args[0]}") from exc
    except OSError as exc:
        # For example a non-executable binary (PermissionError).
        raise PublishToolError(f"Command could not start: {' '.join(args)}\n{exc}") from exc

    if not capture_output:
        return ""
    return result.stdout


def _append_lines(env_name: str, values: Mapping[str, str]) -> None:
    target_file = require_env(env_name)
    with open(target_file, "a", encoding="utf-8") as handle:
        for key, value in values.items():
            handle.write(f"{key}={value}\n")


def write_github_outputs(values: Mapping[str, str]) -> None:
    """
    Write step outputs for GitHub Actions.

    GitHub provides a file path in `GITHUB_OUTPUT`; writing `name=value` lines
    there makes that value available to later steps in the same job.
    """
    _append_lines("GITHUB_OUTPUT", values)


def write_github_env(values: Mapping[str, str]) -> None:
    """
    Export environment variables to later steps.

    Same `name=value` format as outputs, but written to `GITHUB_ENV`, so later
    steps see the values as plain env vars (for example `${{ env.BUILD_DATE }}`).
    """
    _append_lines("GITHUB_ENV", values)


def write_step_summary(markdown: str) -> bool:
    """Append markdown to the job summary page. Returns False outside Actions."""
    summary_file = optional_env("GITHUB_STEP_SUMMARY")
    if not summary_file:
        return False
    with open(summary_file, "a", encoding="utf-8") as handle:
        handle.write(markdown.rstrip("\n") + "\n")
    return True


def normalize_owner(owner: str) -> str:
    """
    Normalize a GitHub owner/org or repository path for container image refs.

    Here, "normalize" means converting to lowercase. Registries reject
    uppercase repository names, so `CeresDB/ceresdb-server` becomes
    `ceresdb/ceresdb-server`.
    """
    return owner.lower()


def skopeo_login(registry: str, *, username: str, password: str, authfile: str) -> None:
    """
    Log in to one registry and store the token in `authfile`.

    The password is fed through stdin so it never appears in the process list
    or in error messages.
    """
    command = [
        "skopeo",
        "login",
        "--authfile",
        authfile,
        "--username",
        username,
        "--password-stdin",
        registry,
    ]
    run_cmd(command, input_text=password)


def skopeo_copy(
    source: str,
    destination: str,
    *,
    dest_authfile: str | None = None,
    digestfile: str | None = None,
    retry_times: int = 3,
) -> None:
    """Copy an image from one transport reference to another using skopeo."""
    command = ["skopeo", "copy", "--retry-times", str(retry_times)]
    if dest_authfile:
        command.extend(["--dest-authfile", dest_authfile])
    if digestfile:
        command.extend(["--digestfile", digestfile])
    command.extend([source, destination])
    run_cmd(command, capture_output=False)
