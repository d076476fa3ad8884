"""
The errors of the reconciliation, as reported to the host runtime.

The host runtime sees only these errors (and their messages) as the reasons
of failures. The low-level errors, such as the OS errors of the filesystem
or of the process spawning, are chained as the causes of our own errors
in the stack traces.

The errors are classified by how the host & the operator should react:

* Configuration conflicts are fatal: nothing changes until the declared
  attributes are fixed. No retries make sense.
* External-tool failures carry the tool's combined output, which is usually
  the only place where the actual reason is explained. No automatic retries;
  the operator fixes the cause and re-runs.
* Unavailable resources (files, directories, installations) are fatal
  for the current operation only.
* Unhandled errors are the bugs: they are converted at the lifecycle
  entry points, so that one broken resource does not crash the host
  for all other resources.
"""
from collections.abc import Sequence


class HelmsetError(Exception):
    """ The base for all the errors reported by the reconciliation. """


class InvalidConfigurationError(HelmsetError):
    """ The declared attributes contradict each other. """


class ResourceUnavailableError(HelmsetError):
    """ A file, a directory, or a binary cannot be accessed or created. """


class ToolError(HelmsetError):
    """ The external tool has failed (exited with an unexpected status). """

    def __init__(
            self,
            __msg: str | None = None,
            *,
            argv: Sequence[str] = (),
            exit_code: int | None = None,
            output: str = '',
    ) -> None:
        super().__init__(__msg)
        self.argv = tuple(argv)
        self.exit_code = exit_code
        self.output = output


class ToolTimeoutError(ToolError):
    """ The external tool has not finished in time (only for bounded calls). """


class InstallationError(HelmsetError):
    """ The pinned binaries cannot be installed. """


class InstallationTimeoutError(InstallationError):
    """ The pinned binaries were not installed in time. """


class UnhandledError(HelmsetError):
    """ An unexpected error (a bug) converted at a lifecycle entry point. """

    def __init__(self, __msg: str | None = None, *, traceback: str = '') -> None:
        super().__init__(__msg)
        self.traceback = traceback
