"""
The lifecycle of the release-set resources: plan, create, read, update, delete.

The host runtime drives every resource through these operations, and persists
the attributes in between. The operations define exactly when the external
tool is invoked, in which mode, and how its results map onto the attributes.

The idempotency of planning is the central concern: the host can plan the same
resource several times per apply cycle, and expects the same diff every time.
The diffs are therefore computed once per desired state, cached until consumed
by an apply, and the cached text is reused by all the repeated plans.

Every entry point converts the unexpected errors into the reported ones,
so that one broken resource never crashes the host for all other resources.
"""
import asyncio
import dataclasses
import functools
import os
import pathlib
import traceback
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from packaging.version import Version

from helmset._cogs.aiokits import aiolocks
from helmset._cogs.clients import errors, installing, processes
from helmset._cogs.configs import configuration
from helmset._cogs.helpers import typedefs
from helmset._cogs.structs import fields, releasesets
from helmset._core.actions import building, caching, loggers, normalizing, versioning

_ResultT = TypeVar('_ResultT')
_MethodT = Callable[..., Awaitable[_ResultT]]


@dataclasses.dataclass(frozen=True)
class DiffConfig:
    """
    How to diff, as decided by the host (not by the resource's attributes).

    ``dry_run`` is for the clusters that do not exist yet: the diff is computed
    without talking to the cluster. ``kubeconfig`` overrides the credentials
    of the release set for the diff only (e.g. a freshly generated one).
    """
    dry_run: bool = False
    kubeconfig: str = ''


def new_id() -> str:
    return uuid.uuid4().hex


def should_diff(release_set: releasesets.ReleaseSet, *, logger: typedefs.Logger) -> bool:
    """
    Check if all the required files exist, so that diffing makes sense at all.

    The files are usually produced by other resources, which may not exist yet.
    """
    for path in release_set.skip_diff_on_missing_files:
        abspath = os.path.abspath(path)
        try:
            os.stat(abspath)
        except FileNotFoundError:
            logger.info(f"Skipping the diff: the required file {abspath!r} is missing.")
            return False
        except OSError as e:
            raise errors.ResourceUnavailableError(f"Cannot verify the required file {abspath!r}: {e}") from e
    return True


def import_release_set(path: str) -> fields.MemoryFields:
    """
    Seed a new resource from an existing manifest file.

    The resource is marked dirty, so that the next apply schedules an update
    for it; the update itself applies only a non-empty planned diff.
    """
    try:
        content = pathlib.Path(path).read_text(encoding='utf-8')
    except OSError as e:
        raise errors.ResourceUnavailableError(f"Cannot import {path!r}: {e}") from e
    return fields.MemoryFields({
        releasesets.KEY_CONTENT: content,
        releasesets.KEY_BINARY: 'helmfile',
        releasesets.KEY_DIRTY: True,
    }, id=new_id())


def guarded(fn: _MethodT[_ResultT]) -> _MethodT[_ResultT]:
    """
    Record the operation's error in the resource, or clear it on success.

    The unexpected errors (bugs) are converted to :class:`errors.UnhandledError`
    with the traceback. The cancellations are not errors and are not converted.
    """
    @functools.wraps(fn)
    async def wrapper(self: Any, d: fields.WritableFields, *args: Any, **kwargs: Any) -> _ResultT:
        try:
            result = await fn(self, d, *args, **kwargs)
        except errors.HelmsetError as e:
            d.set(releasesets.KEY_ERROR, str(e))
            raise
        except Exception as e:
            tb = traceback.format_exc()
            exc = errors.UnhandledError(f"Unhandled error: {e!r}\n{tb}", traceback=tb)
            d.set(releasesets.KEY_ERROR, str(exc))
            raise exc from e
        else:
            d.set(releasesets.KEY_ERROR, '')
            return result
    return wrapper


class Reconciler:
    """
    The lifecycle operations of the release sets, with their shared resources.

    The locks, the settings, and the installer are shared by all the resources
    reconciled by one reconciler. Multiple reconcilers do not block each other,
    so they should not share the working directories.
    """

    def __init__(
            self,
            settings: configuration.ReconcilerSettings | None = None,
            locks: aiolocks.KeyedLocks | None = None,
            installer: installing.Installer | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings if settings is not None else configuration.ReconcilerSettings()
        self.locks = locks if locks is not None else aiolocks.KeyedLocks()
        self.installer: installing.Installer = installer if installer is not None else installing.refuse
        self.cache = caching.DiffCache(self.settings, self.locks)
        self._install_lock = asyncio.Lock()

    async def _prepare(
            self,
            release_set: releasesets.ReleaseSet,
            *,
            logger: typedefs.Logger,
    ) -> tuple[building.Binaries, Version | None]:
        binaries = await versioning.resolve_binaries(
            release_set, installer=self.installer, settings=self.settings,
            logger=logger, lock=self._install_lock)
        version = await versioning.resolve_version(
            release_set, settings=self.settings, locks=self.locks,
            logger=logger, binaries=binaries)
        return binaries, version

    async def _apply(
            self,
            d: fields.WritableFields,
            release_set: releasesets.ReleaseSet,
            *,
            binaries: building.Binaries,
            version: Version | None,
            logger: typedefs.Logger,
    ) -> None:
        args = ['apply', '--concurrency', str(release_set.concurrency), '--suppress-secrets']
        args.extend(versioning.gated_flags(version, 'apply', self.settings.versioning.gates))
        invocation = building.build_invocation(release_set, args, settings=self.settings,
                                               binaries=binaries)
        outcome = await processes.run(invocation, locks=self.locks, logger=logger)
        d.set(releasesets.KEY_APPLY_OUTPUT, outcome.output)

    @guarded
    async def plan(
            self,
            d: fields.WritableFields,
            *,
            config: DiffConfig = DiffConfig(),
    ) -> str:
        """
        Compute the diff of the desired state against the live state.

        Repeated plans of the same desired state return the same diff,
        and run the diff tool only once: the diff is cached until consumed.

        The tool's failures are tolerated if the credentials are not there yet
        (empty or not yet generated by other resources): such a plan has
        no diff, and the error resolves itself in the next cycles.
        """
        d.set(releasesets.KEY_DIFF_OUTPUT, '')
        d.set(releasesets.KEY_APPLY_OUTPUT, '')

        release_set = releasesets.ReleaseSet.from_fields(d)
        logger = loggers.ResourceLogger(d=d, release_set=release_set)
        building.validate(release_set)

        if release_set.path and not release_set.content and not os.path.exists(release_set.path):
            raise errors.ResourceUnavailableError(f"The path {release_set.path!r} does not exist.")

        if not should_diff(release_set, logger=logger):
            return ''

        kubeconfig = os.path.abspath(config.kubeconfig) if config.kubeconfig else \
            building.resolve_kubeconfig(release_set)
        binaries, version = await self._prepare(release_set, logger=logger)
        try:
            path = await self.cache.fingerprint(release_set, version=version,
                                                binaries=binaries, logger=logger)
            diff = self.cache.lookup(path)
            if diff is not None:
                logger.info(f"Reusing the pending diff from {path}")
            else:
                diff = await self._diff(release_set, config=config, binaries=binaries,
                                        version=version, logger=logger)
                self.cache.store(path, diff)
        except errors.ToolError as e:
            if kubeconfig and os.path.exists(kubeconfig):
                raise
            logger.warning(f"Ignoring the diff failure, since the credentials are not ready yet: {e}")
            return ''

        truncated = normalizing.truncate(diff, self.settings.diffing.max_output_len)
        if truncated:
            d.set(releasesets.KEY_DIFF_OUTPUT, truncated)
        return truncated

    async def _diff(
            self,
            release_set: releasesets.ReleaseSet,
            *,
            config: DiffConfig,
            binaries: building.Binaries,
            version: Version | None,
            logger: typedefs.Logger,
    ) -> str:
        args = [
            'diff',
            '--concurrency', str(release_set.concurrency),
            '--detailed-exitcode',
            '--suppress-secrets',
            '--context', str(self.settings.diffing.context),
        ]
        if config.dry_run:
            args.append('--dry-run')
        args.extend(versioning.gated_flags(version, 'diff', self.settings.versioning.gates))
        invocation = building.build_invocation(release_set, args, settings=self.settings,
                                               binaries=binaries, kubeconfig=config.kubeconfig)
        outcome = await processes.run(invocation, locks=self.locks, logger=logger,
                                      detailed_exitcode=True)
        return normalizing.normalize(outcome.output)

    @guarded
    async def create(self, d: fields.WritableFields) -> None:
        release_set = releasesets.ReleaseSet.from_fields(d)
        logger = loggers.ResourceLogger(d=d, release_set=release_set)
        building.validate(release_set)

        binaries, version = await self._prepare(release_set, logger=logger)
        path = await self.cache.fingerprint(release_set, version=version,
                                            binaries=binaries, logger=logger)
        await self._apply(d, release_set, binaries=binaries, version=version, logger=logger)
        self.cache.invalidate(path)

        d.set(releasesets.KEY_DIRTY, False)
        d.set_id(new_id())
        logger.info(f"Created the release set as {d.id!r}")

    @guarded
    async def read(self, d: fields.WritableFields) -> None:
        """
        Forget the previous diffs & applies, and check that the declarations still build.

        The diff is always shown in full against the empty value, never as
        a diff of diffs. The build is only for surfacing the errors early
        in the logs; its failures never block the planning.
        """
        d.set(releasesets.KEY_DIFF_OUTPUT, '')
        d.set(releasesets.KEY_APPLY_OUTPUT, '')

        release_set = releasesets.ReleaseSet.from_fields(d)
        logger = loggers.ResourceLogger(d=d, release_set=release_set)
        building.validate(release_set)

        try:
            binaries = await versioning.resolve_binaries(
                release_set, installer=self.installer, settings=self.settings,
                logger=logger, lock=self._install_lock)
            invocation = building.build_invocation(release_set, ['build'], settings=self.settings,
                                                   binaries=binaries)
            await processes.run(invocation, locks=self.locks, logger=logger)
        except errors.HelmsetError as e:
            logger.warning(f"The release set does not build: {e}")

    @guarded
    async def update(self, d: fields.WritableFields) -> None:
        release_set = releasesets.ReleaseSet.from_fields(d)
        logger = loggers.ResourceLogger(d=d, release_set=release_set)
        building.validate(release_set)

        d.set(releasesets.KEY_DIRTY, False)
        planned = d.get(releasesets.KEY_DIFF_OUTPUT) or ''
        if not planned:
            logger.info("Nothing to apply: the planned diff is empty.")
            return

        binaries, version = await self._prepare(release_set, logger=logger)
        path = await self.cache.fingerprint(release_set, version=version,
                                            binaries=binaries, logger=logger)
        try:
            await self._apply(d, release_set, binaries=binaries, version=version, logger=logger)
        finally:
            self.cache.invalidate(path)

    @guarded
    async def delete(self, d: fields.WritableFields) -> None:
        release_set = releasesets.ReleaseSet.from_fields(d)
        logger = loggers.ResourceLogger(d=d, release_set=release_set)
        building.validate(release_set)

        binaries = await versioning.resolve_binaries(
            release_set, installer=self.installer, settings=self.settings,
            logger=logger, lock=self._install_lock)
        invocation = building.build_invocation(release_set, ['destroy'], settings=self.settings,
                                               binaries=binaries)
        await processes.run(invocation, locks=self.locks, logger=logger)
        d.set_id('')
        logger.info("Destroyed the release set.")
