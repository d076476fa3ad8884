"""
Detecting the library's own version.

The codebase does not contain the version directly, as it would require
code changes on every release. The version comes from the package metadata
of the installed distribution (usually "helmset", unless renamed/forked).

The version is determined only once at startup when the code is loaded.

Not to be confused with :mod:`helmset._core.actions.versioning`, which detects
the versions of the external tools, not of this library.
"""
import importlib.metadata

version: str | None = None

try:
    name, *_ = __name__.split('.')
    version = importlib.metadata.version(name)
except Exception:
    pass  # not installed, or installed from a source tree without metadata.
