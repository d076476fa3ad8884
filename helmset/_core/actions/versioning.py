"""
Detecting the versions of the external tool, and the version-gated features.

The tool evolves independently of us: some flags appear in its later versions
only, and the older versions fail on the unknown flags. So, we ask the tool
for its version (cheap relative to the diffs & applies), and pass the optional
flags only when the version is known to support them.

The unknown versions (unparseable, failed, timed out) are not errors:
they mean the oldest supported behaviour, i.e. no optional flags at all.

Not to be confused with :mod:`helmset._cogs.helpers.versions`, which detects
the version of this library itself.
"""
import asyncio
from collections.abc import Iterable

from packaging.version import InvalidVersion, Version

from helmset._cogs.aiokits import aiolocks
from helmset._cogs.clients import errors, installing, processes
from helmset._cogs.configs import configuration
from helmset._cogs.helpers import typedefs
from helmset._cogs.structs import releasesets
from helmset._core.actions import building

# The helm-diff plugin is installed from its main branch unless pinned.
DEFAULT_HELM_DIFF_VERSION = 'master'


def parse_version(output: str) -> Version | None:
    """
    Parse the last token of the version output, e.g. ``helmfile version v0.139.9``.

    A leading ``v`` is optional. Anything unparseable is an unknown version.
    """
    tokens = output.split()
    if not tokens:
        return None
    token = tokens[-1]
    token = token[1:] if token.startswith('v') else token
    try:
        return Version(token)
    except InvalidVersion:
        return None


async def resolve_version(
        release_set: releasesets.ReleaseSet,
        *,
        settings: configuration.ReconcilerSettings,
        locks: aiolocks.KeyedLocks,
        logger: typedefs.Logger,
        binaries: building.Binaries | None = None,
) -> Version | None:
    invocation = building.build_version_invocation(release_set, binaries=binaries)
    try:
        outcome = await processes.run(invocation, locks=locks, logger=logger,
                                      timeout=settings.versioning.timeout)
    except errors.HelmsetError as e:
        logger.warning(f"Cannot detect the version of {invocation.argv[0]}, assuming the oldest: {e}")
        return None

    version = parse_version(outcome.output)
    if version is None:
        logger.warning(f"Cannot parse the version of {invocation.argv[0]}, assuming the oldest: "
                       f"{outcome.output.strip()!r}")
    else:
        logger.debug(f"Detected the version of {invocation.argv[0]}: {version}")
    return version


def gated_flags(
        version: Version | None,
        subcommand: str,
        gates: Iterable[configuration.VersionGate],
) -> list[str]:
    """ The optional flags of the sub-command that the version supports, in order. """
    if version is None:
        return []
    return [gate.flag for gate in gates
            if gate.subcommand == subcommand and version >= Version(gate.minimum)]


def fingerprint_args(
        version: Version | None,
        *,
        settings: configuration.ReconcilerSettings,
) -> tuple[list[str], bool]:
    """
    The read-only sub-command to fingerprint the desired state with.

    Returns the arguments and whether the output has the embedded values
    (which affects the normalization of the output).
    """
    if version is not None and version >= Version(settings.versioning.embed_values):
        return ['build', '--embed-values'], True
    else:
        return ['template'], False


async def resolve_binaries(
        release_set: releasesets.ReleaseSet,
        *,
        installer: installing.Installer,
        settings: configuration.ReconcilerSettings,
        logger: typedefs.Logger,
        lock: asyncio.Lock,
) -> building.Binaries:
    """
    Get the binaries as declared, or install the pinned versions.

    The helm-diff plugin goes together with helm: pinning only helm
    installs the plugin from its default branch too.
    """
    binaries = building.Binaries.declared(release_set)
    if not release_set.installable:
        return binaries

    requests: dict[str, str] = {}
    if release_set.version:
        requests[installing.HELMFILE] = release_set.version
    if release_set.helm_version:
        requests[installing.HELM] = release_set.helm_version
    if release_set.helm_diff_version or release_set.helm_version:
        requests[installing.HELM_DIFF] = release_set.helm_diff_version or DEFAULT_HELM_DIFF_VERSION

    paths = await installing.install(installer, requests, lock=lock, logger=logger,
                                     timeout=settings.installing.timeout)
    return building.Binaries(
        helmfile=paths.get(installing.HELMFILE, binaries.helmfile),
        helm=paths.get(installing.HELM, binaries.helm),
        data_home=paths.get(installing.HELM_DIFF),
    )
