import functools
from collections.abc import Callable, Iterable
from typing import Any

import click

from helmset._cogs.clients import errors
from helmset._cogs.configs import configuration
from helmset._cogs.helpers import versions
from helmset._core.actions import loggers
from helmset._core.engines import lifecycles
from helmset._core.reactor import hosting


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        else:
            name: str = super().convert(value, param, ctx)
            return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: bool | None = False,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


def state_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ The files of the declarations & of the state, and the reconciliation settings. """
    @click.option('-f', '--file', 'declarations_path', type=click.Path(dir_okay=False),
                  default='helmset.yaml', show_default=True)
    @click.option('-s', '--state', 'state_path', type=click.Path(dir_okay=False),
                  default='helmset.state.json', show_default=True)
    @click.option('--cache-dir', type=click.Path(file_okay=False), default=None)
    @click.option('--max-diff-output-len', type=int, default=None)
    @click.option('--installation-timeout', type=float, default=None)
    @click.option('--version-timeout', type=float, default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(cache_dir: str | None,
                max_diff_output_len: int | None,
                installation_timeout: float | None,
                version_timeout: float | None,
                *args: Any, **kwargs: Any) -> Any:
        settings = configuration.ReconcilerSettings()
        if cache_dir is not None:
            settings.caching.directory = cache_dir
        if max_diff_output_len is not None:
            settings.diffing.max_output_len = max_diff_output_len
        if installation_timeout is not None:
            settings.installing.timeout = installation_timeout
        if version_timeout is not None:
            settings.versioning.timeout = version_timeout
        return fn(*args, settings=settings, **kwargs)

    return wrapper


def report(results: Iterable[hosting.Result], *, show_diffs: bool = False) -> None:
    failed = False
    for result in results:
        line = f"{result.kind.value}.{result.name}: {result.action.value}"
        if result.message:
            line += f" ({result.message.splitlines()[0] if result.failed else result.message})"
        click.echo(line, err=result.failed)
        if result.failed:
            failed = True
            click.echo(result.message, err=True)
        if show_diffs and result.diff:
            click.echo(result.diff)
    if failed:
        raise click.exceptions.Exit(1)


def execute(command: str, **kwargs: Any) -> list[hosting.Result]:
    try:
        return hosting.run(command, **kwargs)
    except errors.HelmsetError as e:
        raise click.ClickException(str(e)) from e


@click.version_option(prog_name='helmset', version=versions.version or 'unknown')
@click.group(name='helmset', context_settings=dict(
    auto_envvar_prefix='HELMSET',
))
def main() -> None:
    pass


@main.command()
@logging_options
@state_options
@click.option('--dry-run', is_flag=True, help="Diff without talking to the cluster.")
@click.option('--kubeconfig', type=str, default='', help="Diff with these credentials.")
def plan(
        declarations_path: str,
        state_path: str,
        settings: configuration.ReconcilerSettings,
        dry_run: bool,
        kubeconfig: str,
) -> None:
    """ Show the changes to be applied, without applying them. """
    results = execute('plan', declarations_path=declarations_path, state_path=state_path,
                      settings=settings,
                      config=lifecycles.DiffConfig(dry_run=dry_run, kubeconfig=kubeconfig))
    report(results, show_diffs=True)


@main.command()
@logging_options
@state_options
def apply(
        declarations_path: str,
        state_path: str,
        settings: configuration.ReconcilerSettings,
) -> None:
    """ Plan and apply the changes; destroy the undeclared resources. """
    results = execute('apply', declarations_path=declarations_path, state_path=state_path,
                      settings=settings)
    report(results, show_diffs=True)


@main.command()
@logging_options
@state_options
def destroy(
        declarations_path: str,
        state_path: str,
        settings: configuration.ReconcilerSettings,
) -> None:
    """ Destroy all the resources known in the state. """
    results = execute('destroy', declarations_path=declarations_path, state_path=state_path,
                      settings=settings)
    report(results)


@main.command(name='import')
@logging_options
@state_options
@click.argument('name')
@click.argument('path', type=click.Path(dir_okay=False))
def import_(
        declarations_path: str,
        state_path: str,
        settings: configuration.ReconcilerSettings,
        name: str,
        path: str,
) -> None:
    """ Seed a release set in the state from an existing manifest file. """
    results = execute('import', declarations_path=declarations_path, state_path=state_path,
                      settings=settings, import_name=name, import_path=path)
    report(results)
