"""
Script: publish_tools/registry.py
What: Describes where the nightly image goes and how to find credentials for each place.
Doing: Loads registry destinations from `ci/publish-destinations.json` and resolves login secrets from env vars.
Why: Adding or removing a registry should be a config change, not a workflow rewrite.
Goal: Give the publisher a validated destination list and a credential source it can ask per destination.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol

from publish_tools.common import AuthError, ConfigurationError, normalize_owner


DEFAULT_DESTINATIONS_FILE = Path("ci/publish-destinations.json")
REQUIRED_FIELDS = ("name", "registry", "repository", "username_env", "password_env")


@dataclass(frozen=True)
class CredentialRef:
    """Names of the env vars that hold a destination's login, not the values."""

    username_env: str
    password_env: str


@dataclass(frozen=True)
class RegistryDestination:
    name: str
    registry: str
    repository: str
    credential: CredentialRef

    def image_ref(self, tag: str) -> str:
        return f"{self.registry}/{self.repository}:{tag}"


@dataclass(frozen=True)
class Credential:
    username: str
    # Keep the secret out of repr() so it cannot leak through log lines.
    password: str = field(repr=False)


class CredentialProvider(Protocol):
    def credential_for(self, destination: RegistryDestination) -> Credential:
        ...


class EnvCredentialProvider:
    """
    Resolve credentials from environment variables.

    In GitHub Actions the workflow maps secrets into env vars; this class only
    reads them. `environ` is injectable to keep tests free of global state.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def credential_for(self, destination: RegistryDestination) -> Credential:
        ref = destination.credential
        missing = [
            name for name in (ref.username_env, ref.password_env) if not self._environ.get(name)
        ]
        if missing:
            # Only variable names go into the message, never values.
            raise AuthError(
                f"Missing credentials for {destination.name}: {', '.join(missing)} not set"
            )
        return Credential(
            username=self._environ[ref.username_env],
            password=self._environ[ref.password_env],
        )


def parse_destination(entry: object, index: int) -> RegistryDestination:
    """Turn one JSON object into a destination, with field-level error messages."""
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Destination #{index} must be a JSON object")

    values: dict[str, str] = {}
    for key in REQUIRED_FIELDS:
        value = str(entry.get(key) or "").strip()
        if not value:
            raise ConfigurationError(f"Destination #{index} is missing required field: {key}")
        values[key] = value

    registry = values["registry"].rstrip("/")
    if "://" in registry:
        raise ConfigurationError(
            f"Destination {values['name']}: registry must be a host name, got {registry}"
        )

    return RegistryDestination(
        name=values["name"],
        registry=registry,
        repository=normalize_owner(values["repository"].strip("/")),
        credential=CredentialRef(
            username_env=values["username_env"],
            password_env=values["password_env"],
        ),
    )


def parse_destinations(document: object) -> list[RegistryDestination]:
    if not isinstance(document, dict) or not isinstance(document.get("destinations"), list):
        raise ConfigurationError("Destinations config must contain a `destinations` list")

    destinations = [
        parse_destination(entry, index) for index, entry in enumerate(document["destinations"], start=1)
    ]

    seen: set[str] = set()
    for destination in destinations:
        if destination.name in seen:
            raise ConfigurationError(f"Duplicate destination name: {destination.name}")
        seen.add(destination.name)
    return destinations


def load_destinations(path: Path) -> list[RegistryDestination]:
    """Read and validate the destinations file. An empty list is returned as-is."""
    if not path.exists():
        raise ConfigurationError(f"Destinations file not found: {path}")
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Destinations file is not valid JSON: {path}: {exc}") from exc
    return parse_destinations(document)
