"""
The boundary to the external fetch-and-cache collaborator for the binaries.

When the release sets pin the versions of helmfile, helm, or helm-diff,
the binaries are not taken from the declared paths, but are installed
(downloaded & cached) by an installer, which is a black box for us:
given a tool name and a version constraint, it returns a path.

For helmfile & helm, the path is the executable. For the helm-diff plugin,
the path is a data directory where helm finds its plugins.

The installers are injected into the orchestrator. By default, there is none,
so the pinned versions are refused with a clear error.
"""
import asyncio
from typing import Protocol

from helmset._cogs.clients import errors
from helmset._cogs.helpers import typedefs

HELMFILE = 'helmfile'
HELM = 'helm'
HELM_DIFF = 'helm-diff'


class Installer(Protocol):
    async def __call__(self, name: str, version: str) -> str: ...


async def refuse(name: str, version: str) -> str:
    raise errors.InstallationError(
        f"Cannot install {name} {version}: no installer is configured. "
        f"Either remove the version constraint, or provide an installer.")


async def install(
        installer: Installer,
        requests: dict[str, str],
        *,
        lock: asyncio.Lock,
        timeout: float | None,
        logger: typedefs.Logger,
) -> dict[str, str]:
    """
    Install all the requested tools, one by one, within one overall timeout.

    The installers are usually not safe for concurrent runs (they share
    the download caches), so all the installations of the orchestrator
    go through one lock. The time waiting for the lock counts too.
    """
    async def _install_all() -> dict[str, str]:
        paths: dict[str, str] = {}
        async with lock:
            for name, version in requests.items():
                logger.debug(f"Installing {name} {version}...")
                paths[name] = await installer(name, version)
                logger.debug(f"Installed {name} {version} as {paths[name]!r}")
        return paths

    try:
        return await asyncio.wait_for(_install_all(), timeout=timeout)
    except asyncio.TimeoutError:
        raise errors.InstallationTimeoutError(
            f"Timeout exceeded while installing {', '.join(requests)} "
            f"(waited for {timeout} seconds).") from None
