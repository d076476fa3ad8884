import pytest

from helmset._cogs.structs.fields import MemoryFields

CONTENT = 'releases:\n- name: app\n  chart: stable/app\n'
DIFF = 'default, app, Deployment (apps) has changed:\n-  replicas: 1\n+  replicas: 2\n'


@pytest.fixture()
def make_fields(helmfile, workdir):
    def factory(**attributes):
        attributes.setdefault('binary', str(helmfile))
        attributes.setdefault('content', CONTENT)
        attributes.setdefault('working_directory', str(workdir))
        return MemoryFields(attributes)
    return factory


@pytest.fixture()
def with_changes(helmfile):
    helmfile.behave('diff', output=DIFF, exit_code=2)
