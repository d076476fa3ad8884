"""
All configuration flags, options, settings to fine-tune the reconciliation.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

In this library, they are called *"settings"* (plural).
Combined, they form a *"configuration"* (singular).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).

The settings are per-process (or per-orchestrator), not per-resource:
the per-resource options are the attributes of the release sets.
"""
import dataclasses
import os


@dataclasses.dataclass(frozen=True)
class VersionGate:
    """
    A command-line flag of the external tool which is not always available.

    The flag is only passed to the sub-command if the resolved tool version
    is the minimum version or newer. Unknown versions never get the flag.
    """
    minimum: str
    subcommand: str
    flag: str


@dataclasses.dataclass
class DiffingSettings:

    max_output_len: int = 4096
    """
    The maximum length of the diff output as reported to the host runtime.

    Longer diffs are cut at a line boundary, and a notice is appended,
    so that the huge diffs do not blow the host's plans and state storages.
    The cached diffs are stored in full regardless of this limit.

    Set to zero or below to disable the truncation (on your own risk).
    """

    context: int = 3
    """
    How many lines of context to show around the changed lines of the diff.
    """


@dataclasses.dataclass
class CachingSettings:

    directory: str | os.PathLike[str] = os.path.join('.terraform', 'helmfile')
    """
    Where the cached diffs & the per-diff temporary directories are stored.

    Relative paths are relative to the process's current working directory,
    not to the release sets' working directories: the cache is shared
    by all the release sets of the process.
    """


@dataclasses.dataclass
class InstallingSettings:

    timeout: float = 60
    """
    How long (in seconds) to wait for the pinned binaries to be installed.

    If the installer does not finish in time, the operation fails
    instead of hanging forever on a stuck download.
    """


@dataclasses.dataclass
class VersioningSettings:

    timeout: float = 60
    """
    How long (in seconds) to wait for ``helmfile version`` to respond.

    On timeout, the version is considered unknown and the oldest supported
    behaviour is assumed (i.e. no optional flags are passed).
    """

    embed_values: str = '0.138.0'
    """
    The tool version since which ``build --embed-values`` is used
    for the diff fingerprints instead of ``template``.

    The threshold is tied to the evolution of the external tool,
    not to this library's logic, hence it is configurable.
    """

    gates: list[VersionGate] = dataclasses.field(default_factory=lambda: [
        VersionGate(minimum='0.139.0', subcommand='apply', flag='--skip-diff-on-install'),
    ])
    """
    The ordered table of the version-gated flags, evaluated once per operation.
    """


@dataclasses.dataclass
class ReconcilerSettings:
    diffing: DiffingSettings = dataclasses.field(default_factory=DiffingSettings)
    caching: CachingSettings = dataclasses.field(default_factory=CachingSettings)
    installing: InstallingSettings = dataclasses.field(default_factory=InstallingSettings)
    versioning: VersioningSettings = dataclasses.field(default_factory=VersioningSettings)
