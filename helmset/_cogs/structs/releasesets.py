"""
The desired state of one reconciliation unit: a release set.

A release set is never stored on its own. It is rebuilt from the resource's
attributes at the start of every lifecycle operation, and is thrown away
at the end of it. The attributes are the only persisted form.

The bags of the different resource kinds (release sets, single releases,
embedded entries) do not have all the keys: the missing keys and the ``None``
values are treated as the defaults, so that all of them can be read here.
"""
import dataclasses
import os
import stat
from collections.abc import Mapping
from typing import Any

from helmset._cogs.clients import errors
from helmset._cogs.helpers import hashing
from helmset._cogs.structs import fields

KEY_BINARY = 'binary'
KEY_HELM_BINARY = 'helm_binary'
KEY_PATH = 'path'
KEY_CONTENT = 'content'
KEY_VALUES = 'values'
KEY_VALUES_FILES = 'values_files'
KEY_SELECTOR = 'selector'
KEY_SELECTORS = 'selectors'
KEY_ENVIRONMENT = 'environment'
KEY_KUBECONFIG = 'kubeconfig'
KEY_ENVIRONMENT_VARIABLES = 'environment_variables'
KEY_WORKING_DIRECTORY = 'working_directory'
KEY_CONCURRENCY = 'concurrency'
KEY_RELEASES_VALUES = 'releases_values'
KEY_SKIP_DIFF_ON_MISSING_FILES = 'skip_diff_on_missing_files'
KEY_VERSION = 'version'
KEY_HELM_VERSION = 'helm_version'
KEY_HELM_DIFF_VERSION = 'helm_diff_version'

# Computed by the lifecycle operations, never declared.
KEY_DIFF_OUTPUT = 'diff_output'
KEY_APPLY_OUTPUT = 'apply_output'
KEY_ERROR = 'error'
KEY_DIRTY = 'dirty'

# The conventional manifest name, which is allowed together with the inline content.
DEFAULT_PATH = 'helmfile.yaml'

# The credentials variable, which is injected as an absolute path.
KUBECONFIG = 'KUBECONFIG'


@dataclasses.dataclass(frozen=True)
class ReleaseSet:
    """
    The desired state of one release set, as declared by the attributes.

    Only the declared (desired-state) fields are here. The computed outputs
    (the diffs, the apply results, the errors) are never part of the desired
    state, so that they cannot affect the fingerprints or the commands.
    """
    binary: str = 'helmfile'
    helm_binary: str = 'helm'
    path: str = ''
    content: str = ''
    values: tuple[str | Mapping[str, Any], ...] = ()
    values_files: tuple[str, ...] = ()
    selector: Mapping[str, str] = dataclasses.field(default_factory=dict)
    selectors: tuple[str, ...] = ()
    environment: str = ''
    kubeconfig: str = ''
    environment_variables: Mapping[str, str] = dataclasses.field(default_factory=dict)
    working_directory: str = ''
    concurrency: int = 0
    releases_values: Mapping[str, str] = dataclasses.field(default_factory=dict)
    skip_diff_on_missing_files: tuple[str, ...] = ()
    version: str = ''
    helm_version: str = ''
    helm_diff_version: str = ''

    @classmethod
    def from_fields(cls, d: fields.ReadableFields) -> "ReleaseSet":
        """
        Rebuild the release set from the resource's attributes.

        If the path exists on disk, the working directory is derived from it:
        the path itself for directories, or the file's parent directory.
        Non-existent paths leave the declared working directory as is.
        """
        def _get(key: str, default: Any) -> Any:
            value = d.get(key)
            return default if value is None else value

        path = str(_get(KEY_PATH, ''))
        working_directory = str(_get(KEY_WORKING_DIRECTORY, ''))
        if path:
            try:
                is_dir = stat.S_ISDIR(os.stat(path).st_mode)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise errors.ResourceUnavailableError(f"Cannot verify the path {path!r}: {e}") from e
            else:
                working_directory = path if is_dir else os.path.dirname(path)

        return cls(
            binary=str(_get(KEY_BINARY, '') or 'helmfile'),
            helm_binary=str(_get(KEY_HELM_BINARY, '') or 'helm'),
            path=path,
            content=str(_get(KEY_CONTENT, '')),
            values=tuple(v if isinstance(v, Mapping) else str(v) for v in _get(KEY_VALUES, [])),
            values_files=tuple(str(v) for v in _get(KEY_VALUES_FILES, [])),
            selector={str(k): str(v) for k, v in _get(KEY_SELECTOR, {}).items()},
            selectors=tuple(str(v) for v in _get(KEY_SELECTORS, [])),
            environment=str(_get(KEY_ENVIRONMENT, '')),
            kubeconfig=str(_get(KEY_KUBECONFIG, '')),
            environment_variables={str(k): str(v) for k, v in _get(KEY_ENVIRONMENT_VARIABLES, {}).items()},
            working_directory=working_directory,
            concurrency=int(_get(KEY_CONCURRENCY, 0)),
            releases_values={str(k): str(v) for k, v in _get(KEY_RELEASES_VALUES, {}).items()},
            skip_diff_on_missing_files=tuple(str(v) for v in _get(KEY_SKIP_DIFF_ON_MISSING_FILES, [])),
            version=str(_get(KEY_VERSION, '')),
            helm_version=str(_get(KEY_HELM_VERSION, '')),
            helm_diff_version=str(_get(KEY_HELM_DIFF_VERSION, '')),
        )

    @property
    def installable(self) -> bool:
        """ Whether the binaries are pinned to versions (so they must be installed). """
        return bool(self.version or self.helm_version or self.helm_diff_version)

    def serialize(self) -> str:
        """ The canonical JSON of the desired state: the same for the same declarations. """
        return hashing.canonical(dataclasses.asdict(self))

    def content_hash(self) -> str:
        return hashing.digest(self.serialize())
