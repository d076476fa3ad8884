import asyncio
import json
import os
import stat
import sys

import pytest

from helmset._cogs.aiokits.aiolocks import KeyedLocks
from helmset._cogs.configs.configuration import ReconcilerSettings
from helmset._core.engines.lifecycles import Reconciler

# A stand-in for the real tool: it prints what it is told to print, exits as told,
# and journals every invocation (with timings) for the assertions in the tests.
FAKE_HELMFILE = '''\
#!{python}
import json, os, sys, time

SUBCOMMANDS = ('build', 'template', 'diff', 'apply', 'destroy', 'version')
VARIABLES = ('KUBECONFIG', 'HELMFILE_TEMPDIR', 'TMPDIR', 'XDG_DATA_HOME', 'CUSTOM_VAR')

here = os.path.dirname(os.path.abspath(__file__))
started = time.time()
with open(os.path.join(here, 'config.json')) as f:
    config = json.load(f)

args = sys.argv[1:]
subcommand = next((arg for arg in args if arg in SUBCOMMANDS), '')
behaviour = config.get(subcommand, {{}})

journal = os.path.join(here, 'journal.jsonl')
calls = 0
if os.path.exists(journal):
    with open(journal) as f:
        calls = sum(1 for line in f if json.loads(line)['subcommand'] == subcommand)

outputs = behaviour.get('outputs') or [behaviour.get('output', '')]
output = outputs[min(calls, len(outputs) - 1)]
exit_code = behaviour.get('exit_code', 0)
tempdir = os.environ.get('HELMFILE_TEMPDIR')
tempdir_exists = bool(tempdir) and os.path.isdir(tempdir)
if tempdir and not tempdir_exists:
    output, exit_code = f'mkdir temp: no such file or directory {{tempdir}}\\n', 1
time.sleep(behaviour.get('delay', 0))
sys.stdout.write(output)
sys.stdout.flush()

with open(journal, 'a') as f:
    f.write(json.dumps(dict(
        subcommand=subcommand,
        argv=sys.argv,
        cwd=os.getcwd(),
        env={{name: os.environ.get(name) for name in VARIABLES}},
        tempdir_exists=tempdir_exists,
        started=started,
        finished=time.time(),
    )) + '\\n')
sys.exit(exit_code)
'''


class FakeHelmfile:
    """ A controller of the fake tool: its behaviour and its journal. """

    def __init__(self, directory):
        super().__init__()
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path = self.directory / 'helmfile'
        self.path.write_text(FAKE_HELMFILE.format(python=sys.executable))
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.config = {}
        self._save()

    def __str__(self):
        return str(self.path)

    def _save(self):
        (self.directory / 'config.json').write_text(json.dumps(self.config))

    def behave(self, subcommand, *, output=None, outputs=None, exit_code=0, delay=0):
        behaviour = dict(exit_code=exit_code, delay=delay)
        if output is not None:
            behaviour['output'] = output
        if outputs is not None:
            behaviour['outputs'] = outputs
        self.config[subcommand] = behaviour
        self._save()

    @property
    def calls(self):
        journal = self.directory / 'journal.jsonl'
        if not journal.exists():
            return []
        return [json.loads(line) for line in journal.read_text().splitlines()]

    def calls_of(self, subcommand):
        return [call for call in self.calls if call['subcommand'] == subcommand]


def pytest_configure(config):
    # Warnings from the testing tools out of our control should not fail the tests.
    config.addinivalue_line('filterwarnings', 'ignore::DeprecationWarning:pytest_asyncio')


# Make all tests in this directory and below asyncio-compatible by default.
# Due to how pytest-async checks for these markers, they should be added as early as possible.
@pytest.hookimpl(hookwrapper=True)
def pytest_pycollect_makeitem(collector, name, obj):
    if collector.funcnamefilter(name) and asyncio.iscoroutinefunction(obj):
        pytest.mark.asyncio(obj)
    yield


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path, monkeypatch):
    workdir = tmp_path / 'cwd'
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    monkeypatch.delenv('KUBECONFIG', raising=False)
    monkeypatch.delenv('CUSTOM_VAR', raising=False)
    return workdir


@pytest.fixture()
def helmfile(tmp_path):
    return FakeHelmfile(tmp_path / 'bin')


@pytest.fixture()
def workdir(tmp_path):
    path = tmp_path / 'work'
    path.mkdir()
    return path


@pytest.fixture()
def settings(tmp_path):
    settings = ReconcilerSettings()
    settings.caching.directory = os.fspath(tmp_path / 'cache')
    settings.versioning.timeout = 10
    return settings


@pytest.fixture()
def locks():
    return KeyedLocks()


@pytest.fixture()
def reconciler(settings, locks):
    return Reconciler(settings=settings, locks=locks)
