"""
Script: publish_tools/build_image.py
What: Builds the server image into a local OCI archive.
Doing: Runs `docker buildx build --output type=oci,dest=<archive>` and exports the archive as a skopeo reference.
Why: Building once to a file lets the publish step push identical bytes to every registry.
Goal: Produce the single artifact that `publish-nightly` distributes.
"""

from __future__ import annotations

from pathlib import Path

from publish_tools.common import optional_env, run_cmd, write_github_outputs


DEFAULT_ARCHIVE = Path("build/image.tar")


def buildx_command(*, context: str, dockerfile: str, archive: Path) -> list[str]:
    """Return the `docker buildx build` argv that writes an OCI archive."""
    return [
        "docker",
        "buildx",
        "build",
        "--file",
        dockerfile,
        "--output",
        f"type=oci,dest={archive}",
        context,
    ]


def artifact_ref(archive: Path) -> str:
    """skopeo transport reference for an OCI archive on disk."""
    return f"oci-archive:{archive}"


def main() -> None:
    context = optional_env("BUILD_CONTEXT", ".")
    dockerfile = optional_env("DOCKERFILE", "Dockerfile")
    archive = Path(optional_env("ARTIFACT_ARCHIVE", str(DEFAULT_ARCHIVE)))

    # buildx does not create the parent directory for `dest=`.
    archive.parent.mkdir(parents=True, exist_ok=True)
    run_cmd(buildx_command(context=context, dockerfile=dockerfile, archive=archive), capture_output=False)

    reference = artifact_ref(archive)
    if optional_env("GITHUB_OUTPUT"):
        write_github_outputs({"artifact_ref": reference})
    print(f"Built image archive: {reference}")


if __name__ == "__main__":
    main()
