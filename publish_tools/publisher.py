"""
Script: publish_tools/publisher.py
What: Publishes one built image to every configured registry under the nightly tags.
Doing: Derives the build identifier, then for each destination runs `skopeo login` and `skopeo copy` once per tag.
Why: One bad credential or flaky registry must not block the other registries, and the job still has to fail loudly.
Goal: Push the same image under the same tags everywhere, report each destination, and exit non-zero if any failed.
"""

from __future__ import annotations

import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence

from publish_tools.build_identifier import (
    DEFAULT_TIME_ZONE,
    BuildIdentifier,
    build_tags,
    derive_build_identifier,
    exported_build_identifier,
    parse_channels,
)
from publish_tools.common import (
    AggregateFailure,
    AuthError,
    ConfigurationError,
    PublishToolError,
    PushError,
    optional_env,
    require_env,
    skopeo_copy,
    skopeo_login,
    write_github_outputs,
    write_step_summary,
)
from publish_tools.registry import (
    DEFAULT_DESTINATIONS_FILE,
    CredentialProvider,
    EnvCredentialProvider,
    RegistryDestination,
    load_destinations,
)


DEFAULT_CHANNELS = "nightly"
DEFAULT_ARTIFACT_REF = "oci-archive:build/image.tar"

LoginFn = Callable[..., None]
PushFn = Callable[..., str]


@dataclass(frozen=True)
class Artifact:
    # skopeo transport reference, for example `oci-archive:build/image.tar`.
    source: str


@dataclass(frozen=True)
class AuthSession:
    destination: RegistryDestination
    username: str
    authfile: str


@dataclass(frozen=True)
class PublishSettings:
    revision_hash: str
    channels: tuple[str, ...] = (DEFAULT_CHANNELS,)
    time_zone: str = DEFAULT_TIME_ZONE
    # Identifier exported by an earlier step of the same run; derived from `now` when None.
    build_id: BuildIdentifier | None = None


@dataclass
class PublishResult:
    destination: RegistryDestination
    tags: list[str]
    success: bool
    error: str = ""
    # tag -> manifest digest reported by the registry after the push.
    digests: dict[str, str] = field(default_factory=dict)

    @property
    def published_tags(self) -> list[str]:
        """Tags that reached the registry, including ones pushed before a later failure."""
        return [tag for tag in self.tags if tag in self.digests]


def push_image(source: str, image_ref: str, *, authfile: str) -> str:
    """
    Copy the artifact to `image_ref` and return the pushed manifest digest.

    Runs with `--retry-times 0`; retry policy is left to the caller.
    """
    with tempfile.TemporaryDirectory(prefix="publish-digest-") as temp_dir:
        digest_path = Path(temp_dir) / "digest"
        skopeo_copy(
            source,
            f"docker://{image_ref}",
            dest_authfile=authfile,
            digestfile=str(digest_path),
            retry_times=0,
        )
        if not digest_path.exists():
            return ""
        try:
            return digest_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise PublishToolError(f"Could not read pushed digest for {image_ref}: {exc}") from exc


def authenticate(
    destination: RegistryDestination,
    credentials: CredentialProvider,
    *,
    authfile: str,
    login: LoginFn = skopeo_login,
) -> AuthSession:
    """
    Log in to one destination and return a session bound to its auth file.

    Each destination gets its own auth file, so two destinations on the same
    registry host never overwrite each other's token.
    """
    # Missing env vars already raise AuthError inside the provider.
    credential = credentials.credential_for(destination)
    try:
        login(
            destination.registry,
            username=credential.username,
            password=credential.password,
            authfile=authfile,
        )
    except PublishToolError as exc:
        raise AuthError(f"Login to {destination.registry} failed for {destination.name}: {exc}") from exc

    print(f"Logged in to {destination.registry} ({destination.name})")
    return AuthSession(destination=destination, username=credential.username, authfile=authfile)


def publish(
    artifact: Artifact,
    session: AuthSession,
    tags: Sequence[str],
    *,
    push: PushFn = push_image,
) -> PublishResult:
    """
    Push the artifact to the session's destination once per tag.

    Pushing the same artifact under the same tag again is safe: the registry
    points the tag at the identical manifest digest.
    """
    if not tags:
        raise ConfigurationError("No tags to publish")

    destination = session.destination
    digests: dict[str, str] = {}
    for tag in tags:
        image_ref = destination.image_ref(tag)
        try:
            digests[tag] = push(artifact.source, image_ref, authfile=session.authfile)
        except PublishToolError as exc:
            raise PushError(f"Push of {image_ref} failed: {exc}", digests=digests) from exc
        print(f"Pushed {artifact.source} -> {image_ref}")

    return PublishResult(destination=destination, tags=list(tags), success=True, digests=digests)


def _publish_destination(
    destination: RegistryDestination,
    artifact: Artifact,
    tags: list[str],
    *,
    credentials: CredentialProvider,
    authfile: str,
    login: LoginFn,
    push: PushFn,
) -> PublishResult:
    # Auth and push errors stay local to this destination.
    try:
        session = authenticate(destination, credentials, authfile=authfile, login=login)
        return publish(artifact, session, tags, push=push)
    except AuthError as exc:
        print(f"Destination {destination.name} failed: {exc}", file=sys.stderr)
        return PublishResult(destination=destination, tags=list(tags), success=False, error=str(exc))
    except PushError as exc:
        print(f"Destination {destination.name} failed: {exc}", file=sys.stderr)
        return PublishResult(
            destination=destination,
            tags=list(tags),
            success=False,
            error=str(exc),
            digests=exc.digests,
        )


def run(
    destinations: Sequence[RegistryDestination],
    artifact: Artifact,
    now: datetime,
    *,
    settings: PublishSettings,
    credentials: CredentialProvider,
    login: LoginFn = skopeo_login,
    push: PushFn = push_image,
) -> list[PublishResult]:
    """
    Publish `artifact` to every destination and return one result per destination.

    Configuration problems raise before any login or push happens. After that,
    destinations are processed in order and a failure on one does not stop the
    next one.
    """
    if not destinations:
        raise ConfigurationError("No registry destinations configured; nothing to publish")

    # One identifier per run, so every registry gets exactly the same tags.
    build_id = settings.build_id or derive_build_identifier(now, settings.time_zone, settings.revision_hash)
    tags = build_tags(settings.channels, build_id)
    print(f"Build identifier: {build_id}")
    print(f"Tags: {' '.join(tags)}")

    results: list[PublishResult] = []
    with tempfile.TemporaryDirectory(prefix="publish-auth-") as auth_dir:
        for index, destination in enumerate(destinations, start=1):
            authfile = str(Path(auth_dir) / f"auth-{index}.json")
            results.append(
                _publish_destination(
                    destination,
                    artifact,
                    tags,
                    credentials=credentials,
                    authfile=authfile,
                    login=login,
                    push=push,
                )
            )
    return results


def summarize_results(results: Sequence[PublishResult]) -> list[str]:
    """One readable line per destination, success or failure."""
    lines: list[str] = []
    for result in results:
        destination = result.destination
        if result.success:
            refs = ", ".join(destination.image_ref(tag) for tag in result.tags)
            lines.append(f"[ok] {destination.name}: {refs}")
        else:
            # Command errors can span lines; the first one is enough for the summary.
            reason = result.error.splitlines()[0] if result.error else "unknown error"
            line = f"[failed] {destination.name}: {reason}"
            if result.published_tags:
                pushed = ", ".join(destination.image_ref(tag) for tag in result.published_tags)
                line += f" (already pushed: {pushed})"
            lines.append(line)
    return lines


def render_summary_markdown(results: Sequence[PublishResult]) -> str:
    """Markdown table for the GitHub job summary page."""
    rows = [
        "### Nightly image publish",
        "",
        "| Destination | Image | Status | Digest |",
        "| --- | --- | --- | --- |",
    ]
    for result in results:
        destination = result.destination
        for tag in result.tags:
            status = "published" if result.success or tag in result.digests else "failed"
            digest = result.digests.get(tag, "")
            rows.append(f"| {destination.name} | `{destination.image_ref(tag)}` | {status} | {digest} |")
    return "\n".join(rows) + "\n"


def raise_for_failures(results: Sequence[PublishResult]) -> None:
    failed = [result.destination.name for result in results if not result.success]
    if failed:
        raise AggregateFailure(
            f"{len(failed)} of {len(results)} destinations failed: {', '.join(failed)}",
            results,
        )


def owner_allows_publish(required_owner: str, repository_owner: str) -> bool:
    """True when no owner guard is set or the repository owner matches it."""
    if not required_owner:
        return True
    return required_owner.lower() == repository_owner.lower()


def main() -> None:
    required_owner = optional_env("PUBLISH_REQUIRED_OWNER")
    repository_owner = optional_env("GITHUB_REPOSITORY_OWNER")
    if not owner_allows_publish(required_owner, repository_owner):
        print(f"Skipping publish: repository owner {repository_owner!r} is not {required_owner!r}.")
        return

    revision_hash = require_env("GITHUB_SHA")
    # Reuse the identifier from `compute-build-identifier` so every step of the run sees one date.
    build_id = exported_build_identifier(
        optional_env("BUILD_DATE"),
        optional_env("SHORT_SHA"),
        revision_hash,
    )
    settings = PublishSettings(
        revision_hash=revision_hash,
        channels=tuple(parse_channels(optional_env("PUBLISH_CHANNELS", DEFAULT_CHANNELS))),
        time_zone=optional_env("BUILD_TIME_ZONE", DEFAULT_TIME_ZONE),
        build_id=build_id,
    )
    destinations_file = Path(optional_env("PUBLISH_DESTINATIONS_FILE", str(DEFAULT_DESTINATIONS_FILE)))
    destinations = load_destinations(destinations_file)
    artifact = Artifact(source=optional_env("ARTIFACT_REF", DEFAULT_ARTIFACT_REF))

    results = run(
        destinations,
        artifact,
        datetime.now(timezone.utc),
        settings=settings,
        credentials=EnvCredentialProvider(),
    )

    for line in summarize_results(results):
        print(line)
    write_step_summary(render_summary_markdown(results))

    if optional_env("GITHUB_OUTPUT"):
        published_refs = [
            result.destination.image_ref(tag) for result in results for tag in result.published_tags
        ]
        write_github_outputs(
            {
                "tags": ",".join(results[0].tags),
                "published_refs": ",".join(published_refs),
            }
        )

    raise_for_failures(results)


if __name__ == "__main__":
    main()
