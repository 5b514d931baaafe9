"""Firecracker/jailer binary discovery.

Resolves which hypervisor or launcher binary to execute from an ordered list
of strategies:

1. Explicit override (FC_SDK_FIRECRACKER_BIN / FC_SDK_JAILER_BIN), always first
2. Bundled release artifacts under one or more bundle roots
3. The system PATH

The policy's mode decides whether bundled, system, or both (and in which
order) run after the override. The first existing executable wins; an
expected SHA-256 turns a hit into a verified hit or a ChecksumMismatchError.

Resolution only reads the filesystem. Nothing is created, chmod-ed or
deleted, so a candidate without an executable bit is skipped, not fixed.

Bundled layouts, probed per root in this order ({V} is the release version,
e.g. v1.12.1; release layouts need a version and a linux x86_64/aarch64 host):

    release-{V}-{arch}/{bin}-{V}-{arch}
    release-{V}-{os}-{arch}/{bin}-{V}-{os}-{arch}
    release-{V}-{arch}/bin/{bin}-{V}-{arch}
    {bin}-{V}-{arch}
    {os}-{arch}/{bin}
    {os}-{arch}/bin/{bin}
    {arch}-{os}/{bin}
    {arch}-{os}/bin/{bin}
    {bin}
"""

from __future__ import annotations

import hashlib
import os
import re
import stat
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

from fc_sdk import constants
from fc_sdk._logging import get_logger
from fc_sdk.exceptions import BinaryNotFoundError, ChecksumMismatchError, InvalidPolicyError
from fc_sdk.platform_utils import host_target
from fc_sdk.settings import Settings

logger = get_logger(__name__)

_RELEASE_VERSION_RE = re.compile(r"v?([0-9]+)\.([0-9]+)\.([0-9]+)")
_SHA256_RE = re.compile(rf"[0-9a-f]{{{constants.SHA256_HEX_LENGTH}}}")


class BinaryKind(str, Enum):
    FIRECRACKER = "firecracker"
    JAILER = "jailer"


class BinarySource(str, Enum):
    """Strategy that produced a resolved binary."""

    BUNDLED = "bundled"
    SYSTEM = "system"
    EXPLICIT_OVERRIDE = "explicit_override"


class BundledMode(str, Enum):
    """Which strategies run (after the explicit override) and in what order."""

    BUNDLED_ONLY = "bundled_only"
    SYSTEM_ONLY = "system_only"
    BUNDLED_THEN_SYSTEM = "bundled_then_system"
    SYSTEM_THEN_BUNDLED = "system_then_bundled"


def normalize_release_version(version: str) -> str:
    """Validate a release version and return it in ``vX.Y.Z`` form.

    Raises:
        InvalidPolicyError: Not ``X.Y.Z`` or ``vX.Y.Z``.
    """
    match = _RELEASE_VERSION_RE.fullmatch(version.strip())
    if match is None:
        raise InvalidPolicyError(
            f"invalid release version {version!r} (expected vX.Y.Z)",
            context={"release_version": version},
        )
    return "v{}.{}.{}".format(*match.groups())


def normalize_sha256(digest: str) -> str:
    """Validate a hex SHA-256 digest (optional ``sha256:`` prefix), lowercased.

    Raises:
        InvalidPolicyError: Not 64 hex digits.
    """
    value = digest.strip().lower().removeprefix("sha256:")
    if _SHA256_RE.fullmatch(value) is None:
        raise InvalidPolicyError(
            f"invalid sha256 digest {digest!r}",
            context={"sha256": digest},
        )
    return value


class ResolutionPolicy(BaseModel):
    """How binaries are discovered.

    Invalid versions and digests raise InvalidPolicyError at construction.
    """

    model_config = ConfigDict(frozen=True)

    mode: BundledMode = BundledMode.BUNDLED_THEN_SYSTEM
    bundle_root: Path | None = None
    release_version: str | None = None
    firecracker_sha256: str | None = None
    jailer_sha256: str | None = None
    firecracker_bin_name: str = constants.FIRECRACKER_BIN_NAME
    jailer_bin_name: str = constants.JAILER_BIN_NAME
    use_env_overrides: bool = True

    @field_validator("release_version")
    @classmethod
    def _validate_release_version(cls, v: str | None) -> str | None:
        return None if v is None else normalize_release_version(v)

    @field_validator("firecracker_sha256", "jailer_sha256")
    @classmethod
    def _validate_sha256(cls, v: str | None) -> str | None:
        return None if v is None else normalize_sha256(v)

    def bin_name(self, kind: BinaryKind) -> str:
        return self.firecracker_bin_name if kind is BinaryKind.FIRECRACKER else self.jailer_bin_name

    def expected_sha256(self, kind: BinaryKind) -> str | None:
        return self.firecracker_sha256 if kind is BinaryKind.FIRECRACKER else self.jailer_sha256


@dataclass(frozen=True)
class ResolvedBinary:
    """A binary chosen for execution.

    Attributes:
        kind: firecracker or jailer
        path: Absolute path of an existing executable file
        source: Strategy that found it
        verified: True if its SHA-256 was checked against the policy
    """

    kind: BinaryKind
    path: Path
    source: BinarySource
    verified: bool = False


# ============================================================================
# Candidate generation
# ============================================================================


def _looks_like_path(value: str) -> bool:
    return os.sep in value or (os.altsep is not None and os.altsep in value)


def bundled_candidates(
    bin_name: str,
    roots: Iterable[Path],
    release_version: str | None,
    target: tuple[str, str],
) -> list[Path]:
    """Every bundled-layout path for *bin_name*, in probe order.

    Release layouts are included only when *release_version* is set and
    *target* is a platform upstream publishes release artifacts for.
    """
    host_os, arch = target
    with_release = release_version is not None and target in constants.RELEASE_TARGETS
    candidates: list[Path] = []
    for root in roots:
        if with_release:
            versioned = f"{bin_name}-{release_version}-{arch}"
            release_dir = root / f"release-{release_version}-{arch}"
            qualified = f"{release_version}-{host_os}-{arch}"
            candidates += [
                release_dir / versioned,
                root / f"release-{qualified}" / f"{bin_name}-{qualified}",
                release_dir / "bin" / versioned,
                root / versioned,
            ]
        for key in (f"{host_os}-{arch}", f"{arch}-{host_os}"):
            candidates += [root / key / bin_name, root / key / "bin" / bin_name]
        candidates.append(root / bin_name)
    return candidates


def system_candidates(bin_name: str, path_env: str | None = None) -> list[Path]:
    """*bin_name* joined onto each PATH directory, in PATH order."""
    if _looks_like_path(bin_name):
        return [Path(bin_name)]
    if path_env is None:
        path_env = os.environ.get("PATH", "")
    return [Path(d) / bin_name for d in path_env.split(os.pathsep) if d]


def _dedupe(paths: Iterable[Path]) -> list[Path]:
    return list(dict.fromkeys(paths))


# ============================================================================
# Resolution
# ============================================================================


@dataclass
class _Search:
    """State shared by the strategies of one resolve() call."""

    kind: BinaryKind
    policy: ResolutionPolicy
    roots: list[Path]
    release_version: str | None
    target: tuple[str, str]
    searched: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    missing_root: bool = False

    def first_executable(self, candidates: Iterable[Path], source: BinarySource) -> ResolvedBinary | None:
        """Probe candidates in order; verify and return the first executable file."""
        for candidate in _dedupe(candidates):
            if candidate in self.searched:
                continue
            self.searched.append(candidate)
            if not _is_regular_file(candidate):
                continue
            if not os.access(candidate, os.X_OK):
                self.skipped.append(candidate)
                logger.debug(
                    "Skipping non-executable candidate",
                    extra={"binary": self.kind.value, "path": str(candidate), "source": source.value},
                )
                continue
            return self._accept(candidate, source)
        return None

    def _accept(self, candidate: Path, source: BinarySource) -> ResolvedBinary:
        path = candidate.absolute()
        expected = self.policy.expected_sha256(self.kind)
        verified = False
        if expected is not None:
            actual = file_sha256(path)
            if actual != expected:
                raise ChecksumMismatchError(self.kind, path, expected, actual, source)
            verified = True
        logger.debug(
            "Resolved binary",
            extra={"binary": self.kind.value, "path": str(path), "source": source.value, "verified": verified},
        )
        return ResolvedBinary(kind=self.kind, path=path, source=source, verified=verified)


_Strategy = Callable[[_Search], ResolvedBinary | None]


def _bundled_strategy(search: _Search) -> ResolvedBinary | None:
    if not search.roots:
        search.missing_root = True
        return None
    candidates = bundled_candidates(
        search.policy.bin_name(search.kind), search.roots, search.release_version, search.target
    )
    return search.first_executable(candidates, BinarySource.BUNDLED)


def _system_strategy(search: _Search) -> ResolvedBinary | None:
    return search.first_executable(system_candidates(search.policy.bin_name(search.kind)), BinarySource.SYSTEM)


def _override_strategy(value: str) -> _Strategy:
    def strategy(search: _Search) -> ResolvedBinary | None:
        if _looks_like_path(value):
            candidates = [Path(value)]
        else:
            candidates = system_candidates(value)
            if search.policy.mode is not BundledMode.SYSTEM_ONLY:
                candidates += bundled_candidates(value, search.roots, search.release_version, search.target)
        return search.first_executable(candidates, BinarySource.EXPLICIT_OVERRIDE)

    return strategy


_MODE_STRATEGIES: dict[BundledMode, tuple[_Strategy, ...]] = {
    BundledMode.BUNDLED_ONLY: (_bundled_strategy,),
    BundledMode.SYSTEM_ONLY: (_system_strategy,),
    BundledMode.BUNDLED_THEN_SYSTEM: (_bundled_strategy, _system_strategy),
    BundledMode.SYSTEM_THEN_BUNDLED: (_system_strategy, _bundled_strategy),
}


def resolve(
    kind: BinaryKind,
    policy: ResolutionPolicy | None = None,
    *,
    settings: Settings | None = None,
) -> ResolvedBinary:
    """Resolve the binary of *kind* under *policy*.

    Args:
        kind: Which binary to resolve
        policy: Resolution policy (default: BUNDLED_THEN_SYSTEM, no root)
        settings: Environment overrides (default: read from the environment)

    Raises:
        BinaryNotFoundError: No strategy found an executable candidate.
        ChecksumMismatchError: First hit does not match the expected digest.
        InvalidPolicyError: Invalid release version in the environment (modes
            that search the bundle), or
            bundled lookup was needed but no bundle root is configured.
    """
    policy = policy or ResolutionPolicy()
    settings = settings or Settings()

    release_version = policy.release_version
    # System-only lookups never read bundle state.
    uses_bundle = policy.mode is not BundledMode.SYSTEM_ONLY
    if uses_bundle and release_version is None and settings.firecracker_release is not None:
        release_version = normalize_release_version(settings.firecracker_release)

    roots = _dedupe(r for r in (policy.bundle_root, settings.bundled_dir) if r is not None)
    search = _Search(kind=kind, policy=policy, roots=roots, release_version=release_version, target=host_target())

    strategies: list[_Strategy] = []
    override = settings.firecracker_bin if kind is BinaryKind.FIRECRACKER else settings.jailer_bin
    if policy.use_env_overrides and override:
        strategies.append(_override_strategy(override))
    strategies.extend(_MODE_STRATEGIES[policy.mode])

    for strategy in strategies:
        resolved = strategy(search)
        if resolved is not None:
            return resolved

    if search.missing_root:
        raise InvalidPolicyError(
            f"{kind.value}: bundled lookup requires a bundle root (policy.bundle_root or FC_SDK_BUNDLED_DIR)",
            context={"binary": kind.value, "mode": policy.mode.value, "searched": [str(p) for p in search.searched]},
        )
    raise BinaryNotFoundError(kind, search.searched)


def resolve_firecracker_bin(
    policy: ResolutionPolicy | None = None, *, settings: Settings | None = None
) -> ResolvedBinary:
    return resolve(BinaryKind.FIRECRACKER, policy, settings=settings)


def resolve_jailer_bin(policy: ResolutionPolicy | None = None, *, settings: Settings | None = None) -> ResolvedBinary:
    return resolve(BinaryKind.JAILER, policy, settings=settings)


# ============================================================================
# File checks
# ============================================================================


def _is_regular_file(path: Path) -> bool:
    try:
        return stat.S_ISREG(path.stat().st_mode)
    except OSError:
        return False


def file_sha256(path: Path) -> str:
    """Hex SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(constants.CHECKSUM_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
