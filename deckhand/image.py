"""Image reference resolution: version tags, pull targets, releases.

The version of a release is the git commit SHA of the working tree, with an
``_uncommitted_<hex>`` suffix when the tree is dirty so an uncommitted build
never reuses a committed tag. An explicit ``--version`` overrides both.
"""

import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from deckhand.errors import ConfigError, ImageNotFound
from deckhand.transport.shell import run_shell_cmd

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

DOCKER_HUB_REGISTRY = "registry-1.docker.io"
_MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)


@dataclass(frozen=True)
class ImageRef:
    """A registry/repository:tag triple."""

    repository: str
    tag: str
    registry: str | None = None

    def __str__(self):
        prefix = f"{self.registry}/" if self.registry else ""
        return f"{prefix}{self.repository}:{self.tag}"


@dataclass(frozen=True)
class Release:
    """Immutable record of one deployable version."""

    version: str
    image: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds"))

    def to_dict(self) -> dict:
        return {"version": self.version, "image": self.image, "created_at": self.created_at}

    @classmethod
    def from_dict(cls, d: dict) -> "Release":
        return cls(version=d["version"], image=d["image"], created_at=d.get("created_at", ""))


def validate_version(version: str) -> str:
    """Docker tags: up to 128 chars of [A-Za-z0-9_.-], not starting with . or -."""
    if not _VERSION_RE.match(version):
        raise ConfigError(f"Invalid version tag '{version}'")
    return version


async def git_version(cwd=None) -> str:
    """Version from git HEAD, suffixed when the working tree has changes."""
    rc, stdout, stderr = await run_shell_cmd(["git", "rev-parse", "HEAD"], cwd=cwd)
    if rc != 0:
        raise ConfigError(f"Cannot determine version from git ({stderr.strip()}); pass --version")
    sha = stdout.strip()

    rc, stdout, _ = await run_shell_cmd(["git", "status", "--porcelain", "--untracked-files=no"], cwd=cwd)
    if rc == 0 and stdout.strip():
        suffix = f"_uncommitted_{secrets.token_hex(8)}"
        logger.warning(f"Working tree has uncommitted changes; version is {sha}{suffix}")
        return f"{sha}{suffix}"
    return sha


def image_ref(image: str, version: str, registry: str | None = None) -> ImageRef:
    """Build the pull target for a release."""
    # Drop a tag baked into the descriptor, keeping registry ports (host:5000/app).
    repository = image.rsplit(":", 1)[0] if "/" not in image.rsplit(":", 1)[-1] else image
    return ImageRef(repository=repository, tag=validate_version(version), registry=registry)


async def resolve_release(image: str, registry: str | None = None, version: str | None = None, cwd=None) -> Release:
    """Create the Release for this deploy invocation."""
    if version is None:
        version = await git_version(cwd=cwd)
    ref = image_ref(image, version, registry)
    return Release(version=ref.tag, image=str(ref))


# ── Registry manifest check ───────────────────────────────────────


def _parse_challenge(header: str) -> dict:
    """Parse ``Bearer realm="...",service="...",scope="..."``."""
    _, _, params = header.partition(" ")
    return dict(re.findall(r'(\w+)="([^"]*)"', params))


async def image_exists(ref: ImageRef, username=None, password=None, client: httpx.AsyncClient | None = None) -> bool:
    """HEAD the manifest for ref, following the bearer-token challenge if any."""
    registry = ref.registry or DOCKER_HUB_REGISTRY
    repository = ref.repository
    if ref.registry is None and "/" not in repository:
        repository = f"library/{repository}"
    url = f"https://{registry}/v2/{repository}/manifests/{ref.tag}"
    auth = (username, password) if username and password else None
    headers = {"Accept": _MANIFEST_ACCEPT}

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=30)
    try:
        resp = await client.head(url, headers=headers, auth=auth)
        challenge = resp.headers.get("www-authenticate", "")
        if resp.status_code == 401 and challenge.lower().startswith("bearer"):
            params = _parse_challenge(challenge)
            token_resp = await client.get(
                params["realm"],
                params={k: v for k, v in params.items() if k in ("service", "scope")},
                auth=auth,
            )
            token_resp.raise_for_status()
            body = token_resp.json()
            token = body.get("token") or body.get("access_token")
            resp = await client.head(url, headers={**headers, "Authorization": f"Bearer {token}"})
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True
    finally:
        if owns_client:
            await client.aclose()


async def verify_release(release: Release, registry: str | None = None, username=None, password=None, client=None) -> None:
    """Raise ImageNotFound unless the release's tag is in the registry."""
    repository = release.image.rsplit(":", 1)[0]
    if registry and repository.startswith(f"{registry}/"):
        repository = repository[len(registry) + 1:]
    ref = ImageRef(repository=repository, tag=release.version, registry=registry)
    logger.info(f"Checking {ref} exists in registry...")
    if not await image_exists(ref, username, password, client=client):
        raise ImageNotFound(f"Image {ref} not found in registry; build and push it first")
