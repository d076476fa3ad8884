"""
Rendering the release sets into the concrete invocations of the external tool.

The builder has no side effects other than the files it must pass by name:
the inline manifest content and the inline state values are materialized
into the working directory under content-addressed names, so that repeated
calls with the same content reuse the same files, and concurrent writers
of the same content do not interfere.

The files are never deleted here: they are reused by the next invocations.
The invocations themselves are not executed here either; see
:mod:`helmset._cogs.clients.processes` for that.
"""
import dataclasses
import os
from collections.abc import Mapping, Sequence
from typing import Any

from helmset._cogs.clients import errors, processes
from helmset._cogs.configs import configuration
from helmset._cogs.helpers import hashing
from helmset._cogs.structs import releasesets

# Which sub-commands accept the per-release overrides via `--set`.
SET_SUBCOMMANDS = frozenset({'template', 'diff', 'apply'})

# The variables to redirect the tool's & its plugins' scratch files during the diffs.
TEMPDIR_VARIABLES = ('HELMFILE_TEMPDIR', 'TMPDIR')

# Where helm looks for its plugins (the helm-diff plugin in our case).
DATA_HOME_VARIABLE = 'XDG_DATA_HOME'


@dataclasses.dataclass(frozen=True)
class Binaries:
    """
    The resolved binaries for one operation: either declared, or installed.

    ``data_home`` is only set when the helm-diff plugin was installed
    to a dedicated location; otherwise, helm uses its default plugins.
    """
    helmfile: str
    helm: str
    data_home: str | None = None

    @classmethod
    def declared(cls, release_set: releasesets.ReleaseSet) -> "Binaries":
        return cls(helmfile=release_set.binary, helm=release_set.helm_binary)


def validate(release_set: releasesets.ReleaseSet) -> None:
    """
    Refuse the contradicting declarations before anything is run or written.
    """
    if release_set.content and release_set.path and release_set.path != releasesets.DEFAULT_PATH:
        raise errors.InvalidConfigurationError(
            f"The content and the path cannot be specified together: "
            f"content={release_set.content!r}, path={release_set.path!r}")
    if release_set.kubeconfig and releasesets.KUBECONFIG in release_set.environment_variables:
        raise errors.InvalidConfigurationError(
            f"The kubeconfig and the environment variable {releasesets.KUBECONFIG} "
            f"cannot be specified together: kubeconfig={release_set.kubeconfig!r}, "
            f"{releasesets.KUBECONFIG}={release_set.environment_variables[releasesets.KUBECONFIG]!r}")


def resolve_kubeconfig(release_set: releasesets.ReleaseSet) -> str:
    """
    Get the credentials file as an absolute path, or an empty string if none.

    It can come either from the dedicated field, or from the declared
    environment variables (but not from both; see :func:`validate`).
    """
    validate(release_set)
    kubeconfig = release_set.kubeconfig or release_set.environment_variables.get(releasesets.KUBECONFIG, '')
    return os.path.abspath(kubeconfig) if kubeconfig else ''


def tempdir_path(release_set: releasesets.ReleaseSet, *, settings: configuration.ReconcilerSettings) -> str:
    """ A scratch directory for one diff, unique per desired state; created by the runner. """
    directory = os.fspath(settings.caching.directory)
    return os.path.abspath(os.path.join(directory, f'temp-{release_set.content_hash()}'))


def build_invocation(
        release_set: releasesets.ReleaseSet,
        args: Sequence[str],
        *,
        settings: configuration.ReconcilerSettings,
        binaries: Binaries | None = None,
        kubeconfig: str = '',
) -> processes.Invocation:
    """
    Render the release set and the sub-command arguments into an invocation.

    ``args`` start with the sub-command name, followed by its own flags.
    ``kubeconfig``, if set, overrides the release set's credentials
    (used by the diffs of the not-yet-existing clusters).
    """
    validate(release_set)
    binaries = binaries if binaries is not None else Binaries.declared(release_set)
    subcommand = args[0] if args else ''
    cwd = release_set.working_directory
    files: list[str] = []

    if cwd:
        try:
            os.makedirs(cwd, exist_ok=True)
        except OSError as e:
            raise errors.ResourceUnavailableError(f"Cannot create the working directory {cwd!r}: {e}") from e

    if release_set.content:
        manifest = f'helmfile-{hashing.digest(release_set.content)}.yaml'
        _materialize(os.path.join(cwd, manifest), release_set.content)
        files.append(manifest)
    elif release_set.path:
        manifest = os.path.abspath(release_set.path)
    else:
        manifest = releasesets.DEFAULT_PATH

    flags: list[str] = []
    if release_set.environment:
        flags.extend(['--environment', release_set.environment])
    flags.extend(['--file', manifest])
    flags.extend(['--helm-binary', binaries.helm])
    flags.append('--no-color')
    for key, val in sorted(release_set.selector.items()):
        flags.extend(['--selector', f'{key}={val}'])
    for selector in release_set.selectors:
        flags.extend(['--selector', selector])
    for values_file in release_set.values_files:
        flags.extend(['--state-values-file', values_file])
    for values in release_set.values:
        serialized = _serialize_values(values)
        values_file = f'temp.values-{hashing.digest(serialized)}.yaml'
        _materialize(os.path.join(cwd, values_file), serialized)
        files.append(values_file)
        flags.extend(['--state-values-file', values_file])

    tail: list[str] = list(args)
    if subcommand in SET_SUBCOMMANDS:
        for key, val in sorted(release_set.releases_values.items()):
            tail.extend(['--set', f'{key}={val}'])

    env = dict(os.environ)
    for key, val in sorted(release_set.environment_variables.items()):
        if key != releasesets.KUBECONFIG:
            env[key] = val
    kubeconfig = os.path.abspath(kubeconfig) if kubeconfig else resolve_kubeconfig(release_set)
    if kubeconfig:
        env[releasesets.KUBECONFIG] = kubeconfig
    if binaries.data_home:
        env[DATA_HOME_VARIABLE] = binaries.data_home
    tempdir = tempdir_path(release_set, settings=settings) if subcommand == 'diff' else ''
    if tempdir:
        for variable in TEMPDIR_VARIABLES:
            env[variable] = tempdir

    return processes.Invocation(
        argv=(binaries.helmfile, *flags, *tail),
        cwd=cwd,
        env=env,
        subcommand=subcommand,
        files=tuple(files),
        tempdir=tempdir,
    )


def build_version_invocation(
        release_set: releasesets.ReleaseSet,
        *,
        binaries: Binaries | None = None,
) -> processes.Invocation:
    binaries = binaries if binaries is not None else Binaries.declared(release_set)
    env = dict(os.environ)
    env.update({key: val for key, val in release_set.environment_variables.items()
                if key != releasesets.KUBECONFIG})
    return processes.Invocation(
        argv=(binaries.helmfile, 'version'),
        cwd=release_set.working_directory if os.path.isdir(release_set.working_directory) else '',
        env=env,
        subcommand='version',
    )


def _serialize_values(values: str | Mapping[str, Any]) -> str:
    # JSON is a subset of YAML, so the structured values are passed as JSON.
    return values if isinstance(values, str) else hashing.canonical(values)


def _materialize(path: str, content: str) -> None:
    """ Write the file only if it is absent or different. """
    data = content.encode('utf-8')
    try:
        with open(path, 'rb') as f:
            if f.read() == data:
                return
    except FileNotFoundError:
        pass
    except OSError as e:
        raise errors.ResourceUnavailableError(f"Cannot read {path!r}: {e}") from e

    try:
        with open(path, 'wb') as f:
            f.write(data)
    except OSError as e:
        raise errors.ResourceUnavailableError(f"Cannot write {path!r}: {e}") from e
