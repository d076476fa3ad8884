"""
Running the external tool as a subprocess, one invocation at a time.

Everything the tool prints (both stdout & stderr) is captured as one combined
text, in the order as printed: the tool's error messages are often mixed
with its regular output, and both are needed to explain the failures.

The invocations that touch the working tree are serialized per working
directory via the keyed locks. The locks are held for the whole lifetime
of the subprocess and are released in all cases, including cancellations.
"""
import asyncio
import dataclasses
import logging
import os
import shutil

from helmset._cogs.aiokits import aiolocks
from helmset._cogs.clients import errors
from helmset._cogs.helpers import typedefs

logger = logging.getLogger(__name__)

# The exit code of `helmfile diff --detailed-exitcode` when there are changes.
EXIT_CODE_CHANGES = 2

# Sub-commands that read or mutate the working tree or the live state.
LOCKED_SUBCOMMANDS = frozenset({'build', 'template', 'diff', 'apply', 'destroy'})


@dataclasses.dataclass(frozen=True)
class Invocation:
    """
    A concrete command to run: arguments, working directory, environment.

    The invocation exists only for the duration of one external process call.
    The files it has materialized are listed for information; they are
    content-addressed and are kept on disk for later reuse.
    The scratch directory, if any, exists only while the process runs.
    """
    argv: tuple[str, ...]
    cwd: str
    env: typedefs.Environ
    subcommand: str
    files: tuple[str, ...] = ()
    tempdir: str = ''

    @property
    def locked(self) -> bool:
        return self.subcommand in LOCKED_SUBCOMMANDS

    def __str__(self) -> str:
        return ' '.join(self.argv)


@dataclasses.dataclass(frozen=True)
class Outcome:
    """ The result of one successful (or tolerably failed) invocation. """
    output: str
    exit_code: int

    @property
    def changed(self) -> bool:
        return self.exit_code == EXIT_CODE_CHANGES


async def run(
        invocation: Invocation,
        *,
        locks: aiolocks.KeyedLocks,
        logger: typedefs.Logger = logger,
        detailed_exitcode: bool = False,
        timeout: float | None = None,
) -> Outcome:
    """
    Run the invocation to completion and interpret its exit code.

    With ``detailed_exitcode``, the exit code 2 means "changes are present"
    and is not an error; the exit code 0 means "no changes", so the output
    (which is only informational in that case) is dropped.
    All other non-zero exit codes are errors with the combined output included.
    """
    if invocation.locked:
        async with locks.held(os.path.abspath(invocation.cwd or os.curdir)):
            return await _run_in_tempdir(invocation, logger=logger, timeout=timeout,
                                         detailed_exitcode=detailed_exitcode)
    else:
        return await _run_in_tempdir(invocation, logger=logger, timeout=timeout,
                                     detailed_exitcode=detailed_exitcode)


async def _run_in_tempdir(
        invocation: Invocation,
        *,
        logger: typedefs.Logger,
        detailed_exitcode: bool,
        timeout: float | None,
) -> Outcome:
    # Created & removed under the lock: the identical invocations share the same path.
    if not invocation.tempdir:
        return await _run(invocation, logger=logger, timeout=timeout,
                          detailed_exitcode=detailed_exitcode)
    try:
        os.makedirs(invocation.tempdir, exist_ok=True)
    except OSError as e:
        raise errors.ResourceUnavailableError(
            f"Cannot create the temp directory {invocation.tempdir!r}: {e}") from e
    try:
        return await _run(invocation, logger=logger, timeout=timeout,
                          detailed_exitcode=detailed_exitcode)
    finally:
        shutil.rmtree(invocation.tempdir, ignore_errors=True)


async def _run(
        invocation: Invocation,
        *,
        logger: typedefs.Logger,
        detailed_exitcode: bool,
        timeout: float | None,
) -> Outcome:
    logger.debug(f"Running {invocation} in {invocation.cwd or os.curdir!r}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *invocation.argv,
            cwd=invocation.cwd or None,
            env=dict(invocation.env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise errors.ResourceUnavailableError(f"Cannot run {invocation.argv[0]!r}: {e}") from e

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(proc)
        raise errors.ToolTimeoutError(
            f"{invocation.argv[0]}: no response in {timeout} seconds",
            argv=invocation.argv,
        ) from None
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    output = stdout.decode('utf-8', errors='replace') if stdout else ''
    exit_code = proc.returncode if proc.returncode is not None else -1
    logger.debug(f"The tool has exited with {exit_code}; the output:\n{output}")

    if exit_code == 0 and detailed_exitcode:
        return Outcome(output='', exit_code=exit_code)
    elif exit_code == 0:
        return Outcome(output=output, exit_code=exit_code)
    elif exit_code == EXIT_CODE_CHANGES and detailed_exitcode:
        return Outcome(output=output, exit_code=exit_code)
    else:
        raise errors.ToolError(
            f"{invocation.argv[0]}: exit status {exit_code}\n{output}",
            argv=invocation.argv, exit_code=exit_code, output=output)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    # The process can exit on its own between the timeout and the kill.
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
