"""
The cache of the computed diffs, keyed by the fingerprints of the desired states.

The host runtime can plan the same resource several times per apply cycle,
and expects the same plan every time. The diff tool is slow and not always
reproducible (it talks to the cluster & to the chart repositories).
So, once a diff is computed for a desired state, it is stored on disk and
reused by the next plans until the apply or the update consumes it.

The fingerprint of the desired state is the hash of the read-only rendering
of the release set (normalized) plus the declarations of the release set.
The rendering captures the changes in the referenced files & charts,
which the declarations alone do not show.

An empty diff is never stored: "no changes" is represented by a cache miss,
so that a present cache file always means "a diff is pending".
"""
import logging
import os
import pathlib

from packaging.version import Version

from helmset._cogs.aiokits import aiolocks
from helmset._cogs.clients import errors, processes
from helmset._cogs.configs import configuration
from helmset._cogs.helpers import hashing, typedefs
from helmset._cogs.structs import releasesets
from helmset._core.actions import building, normalizing, versioning

logger = logging.getLogger(__name__)


class DiffCache:

    def __init__(
            self,
            settings: configuration.ReconcilerSettings,
            locks: aiolocks.KeyedLocks,
            logger: typedefs.Logger = logger,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.locks = locks
        self.logger = logger

    @property
    def directory(self) -> pathlib.Path:
        return pathlib.Path(self.settings.caching.directory)

    async def fingerprint(
            self,
            release_set: releasesets.ReleaseSet,
            *,
            version: Version | None,
            binaries: building.Binaries | None = None,
            logger: typedefs.Logger | None = None,
    ) -> pathlib.Path:
        """
        Render the release set read-only, and derive the cache file path from it.

        Never runs the diffs or the applies: only ``build`` or ``template``.
        """
        logger = logger if logger is not None else self.logger
        args, embedded_values = versioning.fingerprint_args(version, settings=self.settings)
        invocation = building.build_invocation(release_set, args, settings=self.settings,
                                               binaries=binaries)
        outcome = await processes.run(invocation, locks=self.locks, logger=logger)
        normalized = normalizing.normalize(outcome.output, embedded_values=embedded_values)
        key = hashing.digest(normalized, release_set.serialize())
        path = self.directory / f'diff-{key}'
        logger.debug(f"The diff fingerprint is {path}")
        return path

    def lookup(self, path: pathlib.Path) -> str | None:
        """ Get the pending diff, or ``None`` if there is none (missing or empty). """
        try:
            text = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except OSError as e:
            raise errors.ResourceUnavailableError(f"Cannot read the cached diff {path}: {e}") from e
        return text or None

    def store(self, path: pathlib.Path, text: str) -> None:
        if not text:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding='utf-8')
        except OSError as e:
            raise errors.ResourceUnavailableError(f"Cannot write the cached diff {path}: {e}") from e
        self.logger.debug(f"Stored the diff to {path}")

    def invalidate(self, path: pathlib.Path) -> None:
        """ Forget the consumed diff. The failures are only logged. """
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Cannot remove the cached diff {path}: {e}")
        else:
            self.logger.debug(f"Removed the cached diff {path}")
