"""
The main Helmset module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the library's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from helmset._cogs.aiokits.aiolocks import (
    KeyedLocks,
)
from helmset._cogs.clients.errors import (
    HelmsetError,
    InvalidConfigurationError,
    ResourceUnavailableError,
    ToolError,
    ToolTimeoutError,
    InstallationError,
    InstallationTimeoutError,
    UnhandledError,
)
from helmset._cogs.clients.installing import (
    Installer,
)
from helmset._cogs.configs.configuration import (
    ReconcilerSettings,
    DiffingSettings,
    CachingSettings,
    InstallingSettings,
    VersioningSettings,
    VersionGate,
)
from helmset._cogs.helpers.typedefs import (
    Logger,
)
from helmset._cogs.helpers.versions import (
    version as __version__,
)
from helmset._cogs.structs.fields import (
    ReadableFields,
    WritableFields,
    MemoryFields,
    ResourceFields,
)
from helmset._cogs.structs.releasesets import (
    ReleaseSet,
)
from helmset._core.actions.caching import (
    DiffCache,
)
from helmset._core.actions.loggers import (
    LogFormat,
    ResourceLogger,
    configure,
)
from helmset._core.actions.normalizing import (
    normalize,
    truncate,
)
from helmset._core.engines.embedding import (
    EmbeddedReleaseSets,
)
from helmset._core.engines.lifecycles import (
    DiffConfig,
    Reconciler,
    import_release_set,
)
from helmset._core.intents.releases import (
    Releases,
)

__all__ = [
    'KeyedLocks',
    'HelmsetError',
    'InvalidConfigurationError',
    'ResourceUnavailableError',
    'ToolError',
    'ToolTimeoutError',
    'InstallationError',
    'InstallationTimeoutError',
    'UnhandledError',
    'Installer',
    'ReconcilerSettings',
    'DiffingSettings',
    'CachingSettings',
    'InstallingSettings',
    'VersioningSettings',
    'VersionGate',
    'Logger',
    'ReadableFields',
    'WritableFields',
    'MemoryFields',
    'ResourceFields',
    'ReleaseSet',
    'DiffCache',
    'LogFormat',
    'ResourceLogger',
    'configure',
    'normalize',
    'truncate',
    'EmbeddedReleaseSets',
    'DiffConfig',
    'Reconciler',
    'import_release_set',
    'Releases',
]
