import hashlib
import os

import pytest

from helmset._cogs.clients.errors import InvalidConfigurationError, ResourceUnavailableError
from helmset._cogs.structs.fields import MemoryFields
from helmset._cogs.structs.releasesets import ReleaseSet
from helmset._core.actions.building import Binaries, build_invocation, \
                                           build_version_invocation, resolve_kubeconfig, validate

CONTENT = 'releases:\n- name: app\n  chart: stable/app\n'
STRUCTURED = '{"y":2}'


def sha256(text):
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def make(**attributes):
    return ReleaseSet.from_fields(MemoryFields(attributes))


#
# Validation.
#


def test_content_with_a_custom_path_is_a_conflict(workdir, settings):
    rs = make(content=CONTENT, path='custom.yaml', working_directory=str(workdir))
    with pytest.raises(InvalidConfigurationError, match=r"content and the path"):
        validate(rs)
    with pytest.raises(InvalidConfigurationError):
        build_invocation(rs, ['build'], settings=settings)
    assert list(workdir.iterdir()) == []


def test_content_with_the_default_path_is_allowed(workdir, settings):
    rs = make(content=CONTENT, path='helmfile.yaml', working_directory=str(workdir))
    validate(rs)
    invocation = build_invocation(rs, ['build'], settings=settings)
    assert invocation.argv[invocation.argv.index('--file') + 1] == f'helmfile-{sha256(CONTENT)}.yaml'


def test_kubeconfig_with_the_kubeconfig_variable_is_a_conflict(settings):
    rs = make(kubeconfig='kc1', environment_variables={'KUBECONFIG': 'kc2'})
    with pytest.raises(InvalidConfigurationError, match=r"kubeconfig and the environment variable"):
        validate(rs)
    with pytest.raises(InvalidConfigurationError):
        build_invocation(rs, ['build'], settings=settings)


#
# Credentials.
#


def test_kubeconfig_is_empty_by_default():
    assert resolve_kubeconfig(make()) == ''


def test_kubeconfig_from_the_field_is_absolute(_isolated_cwd):
    assert resolve_kubeconfig(make(kubeconfig='kc')) == os.path.join(str(_isolated_cwd), 'kc')


def test_kubeconfig_from_the_variable_is_absolute(_isolated_cwd):
    rs = make(environment_variables={'KUBECONFIG': 'kc'})
    assert resolve_kubeconfig(rs) == os.path.join(str(_isolated_cwd), 'kc')


#
# Arguments.
#


def test_full_arguments_in_order(workdir, settings):
    rs = make(
        content=CONTENT,
        environment='prod',
        helm_binary='helm3',
        selector={'b': '2', 'a': '1'},
        selectors=['name=app'],
        values_files=['vf.yaml'],
        values=['x: 1', {'y': 2}],
        releases_values={'z': '3', 'w': '4'},
        working_directory=str(workdir),
    )
    invocation = build_invocation(rs, ['diff', '--detailed-exitcode'], settings=settings)
    assert invocation.argv == (
        'helmfile',
        '--environment', 'prod',
        '--file', f'helmfile-{sha256(CONTENT)}.yaml',
        '--helm-binary', 'helm3',
        '--no-color',
        '--selector', 'a=1',
        '--selector', 'b=2',
        '--selector', 'name=app',
        '--state-values-file', 'vf.yaml',
        '--state-values-file', f'temp.values-{sha256("x: 1")}.yaml',
        '--state-values-file', f"temp.values-{sha256(STRUCTURED)}.yaml",
        'diff', '--detailed-exitcode',
        '--set', 'w=4',
        '--set', 'z=3',
    )
    assert invocation.cwd == str(workdir)
    assert invocation.subcommand == 'diff'
    assert str(invocation) == ' '.join(invocation.argv)


def test_environment_is_omitted_when_empty(settings):
    invocation = build_invocation(make(), ['build'], settings=settings)
    assert '--environment' not in invocation.argv


def test_default_manifest_when_neither_content_nor_path(settings):
    invocation = build_invocation(make(), ['build'], settings=settings)
    assert invocation.argv[:3] == ('helmfile', '--file', 'helmfile.yaml')


def test_path_is_passed_as_absolute(tmp_path, settings):
    (tmp_path / 'stack').mkdir()
    (tmp_path / 'stack' / 'helmfile.yaml').write_text(CONTENT)
    rs = make(path=str(tmp_path / 'stack' / 'helmfile.yaml'))
    invocation = build_invocation(rs, ['build'], settings=settings)
    assert invocation.argv[invocation.argv.index('--file') + 1] == str(tmp_path / 'stack' / 'helmfile.yaml')
    assert invocation.cwd == str(tmp_path / 'stack')


@pytest.mark.parametrize('subcommand', ['template', 'diff', 'apply'])
def test_releases_values_are_set_for_rendering_subcommands(settings, subcommand):
    rs = make(releases_values={'k': 'v'})
    invocation = build_invocation(rs, [subcommand], settings=settings)
    assert invocation.argv[-2:] == ('--set', 'k=v')


@pytest.mark.parametrize('subcommand', ['build', 'destroy'])
def test_releases_values_are_not_set_for_other_subcommands(settings, subcommand):
    rs = make(releases_values={'k': 'v'})
    invocation = build_invocation(rs, [subcommand], settings=settings)
    assert '--set' not in invocation.argv


def test_installed_binaries_are_used(settings):
    binaries = Binaries(helmfile='/opt/helmfile', helm='/opt/helm', data_home='/opt/data')
    invocation = build_invocation(make(), ['build'], settings=settings, binaries=binaries)
    assert invocation.argv[0] == '/opt/helmfile'
    assert invocation.argv[invocation.argv.index('--helm-binary') + 1] == '/opt/helm'
    assert invocation.env['XDG_DATA_HOME'] == '/opt/data'


def test_version_invocation(settings):
    invocation = build_version_invocation(make(binary='/opt/helmfile'))
    assert invocation.argv == ('/opt/helmfile', 'version')
    assert invocation.subcommand == 'version'
    assert not invocation.locked


#
# Files.
#


def test_working_directory_is_created(tmp_path, settings):
    rs = make(working_directory=str(tmp_path / 'a' / 'b'))
    build_invocation(rs, ['build'], settings=settings)
    assert (tmp_path / 'a' / 'b').is_dir()


def test_uncreatable_working_directory_fails(tmp_path, settings):
    (tmp_path / 'file').write_text('')
    rs = make(working_directory=str(tmp_path / 'file' / 'sub'))
    with pytest.raises(ResourceUnavailableError, match=r"Cannot create the working directory"):
        build_invocation(rs, ['build'], settings=settings)


def test_content_and_values_are_materialized(workdir, settings):
    rs = make(content=CONTENT, values=['x: 1', {'y': 2}], working_directory=str(workdir))
    invocation = build_invocation(rs, ['build'], settings=settings)
    assert invocation.files == (
        f'helmfile-{sha256(CONTENT)}.yaml',
        f'temp.values-{sha256("x: 1")}.yaml',
        f"temp.values-{sha256(STRUCTURED)}.yaml",
    )
    assert (workdir / invocation.files[0]).read_text() == CONTENT
    assert (workdir / invocation.files[1]).read_text() == 'x: 1'
    assert (workdir / invocation.files[2]).read_text() == '{"y":2}'


def test_identical_content_reuses_the_same_files(workdir, settings):
    rs1 = make(content=CONTENT, working_directory=str(workdir), environment='one')
    rs2 = make(content=CONTENT, working_directory=str(workdir), environment='two')
    invocation1 = build_invocation(rs1, ['build'], settings=settings)
    invocation2 = build_invocation(rs2, ['build'], settings=settings)
    assert invocation1.files == invocation2.files
    assert sorted(p.name for p in workdir.iterdir()) == [f'helmfile-{sha256(CONTENT)}.yaml']


def test_different_content_never_collides(workdir, settings):
    rs1 = make(content=CONTENT, working_directory=str(workdir))
    rs2 = make(content=CONTENT + '# changed\n', working_directory=str(workdir))
    invocation1 = build_invocation(rs1, ['build'], settings=settings)
    invocation2 = build_invocation(rs2, ['build'], settings=settings)
    assert invocation1.files != invocation2.files
    assert (workdir / invocation1.files[0]).read_text() == CONTENT
    assert (workdir / invocation2.files[0]).read_text() == CONTENT + '# changed\n'


def test_unchanged_files_are_not_rewritten(workdir, settings):
    rs = make(content=CONTENT, working_directory=str(workdir))
    invocation = build_invocation(rs, ['build'], settings=settings)
    path = workdir / invocation.files[0]
    os.utime(path, ns=(1_000_000_000, 1_000_000_000))
    build_invocation(rs, ['build'], settings=settings)
    assert path.stat().st_mtime_ns == 1_000_000_000


def test_changed_files_are_rewritten(workdir, settings):
    rs = make(content=CONTENT, working_directory=str(workdir))
    invocation = build_invocation(rs, ['build'], settings=settings)
    path = workdir / invocation.files[0]
    path.write_text('corrupted')
    build_invocation(rs, ['build'], settings=settings)
    assert path.read_text() == CONTENT


#
# Environment.
#


def test_process_environment_is_inherited(monkeypatch, settings):
    monkeypatch.setenv('CUSTOM_VAR', 'inherited')
    invocation = build_invocation(make(), ['build'], settings=settings)
    assert invocation.env['CUSTOM_VAR'] == 'inherited'


def test_declared_variables_override_the_process_environment(monkeypatch, settings):
    monkeypatch.setenv('CUSTOM_VAR', 'inherited')
    rs = make(environment_variables={'CUSTOM_VAR': 'declared'})
    invocation = build_invocation(rs, ['build'], settings=settings)
    assert invocation.env['CUSTOM_VAR'] == 'declared'


def test_kubeconfig_is_injected_as_absolute(_isolated_cwd, settings):
    invocation = build_invocation(make(kubeconfig='kc'), ['build'], settings=settings)
    assert invocation.env['KUBECONFIG'] == os.path.join(str(_isolated_cwd), 'kc')


def test_kubeconfig_variable_is_injected_as_absolute(_isolated_cwd, settings):
    rs = make(environment_variables={'KUBECONFIG': 'kc'})
    invocation = build_invocation(rs, ['build'], settings=settings)
    assert invocation.env['KUBECONFIG'] == os.path.join(str(_isolated_cwd), 'kc')


def test_kubeconfig_override(_isolated_cwd, settings):
    invocation = build_invocation(make(kubeconfig='kc'), ['diff'], settings=settings, kubeconfig='other')
    assert invocation.env['KUBECONFIG'] == os.path.join(str(_isolated_cwd), 'other')


def test_no_kubeconfig_is_injected_when_none_is_declared(settings):
    invocation = build_invocation(make(), ['build'], settings=settings)
    assert 'KUBECONFIG' not in invocation.env


def test_diff_gets_a_tempdir_per_desired_state(settings):
    rs1 = make(content='a')
    rs2 = make(content='b')
    invocation1 = build_invocation(rs1, ['diff'], settings=settings)
    invocation2 = build_invocation(rs2, ['diff'], settings=settings)
    tempdir1 = os.path.join(settings.caching.directory, f'temp-{rs1.content_hash()}')
    tempdir2 = os.path.join(settings.caching.directory, f'temp-{rs2.content_hash()}')
    assert invocation1.env['HELMFILE_TEMPDIR'] == invocation1.env['TMPDIR'] == tempdir1
    assert invocation2.env['HELMFILE_TEMPDIR'] == invocation2.env['TMPDIR'] == tempdir2
    assert invocation1.tempdir == tempdir1
    assert invocation2.tempdir == tempdir2
    assert not os.path.exists(tempdir1)  # created only by the runner


def test_other_subcommands_get_no_tempdir(monkeypatch, settings):
    monkeypatch.delenv('HELMFILE_TEMPDIR', raising=False)
    invocation = build_invocation(make(), ['apply'], settings=settings)
    assert 'HELMFILE_TEMPDIR' not in invocation.env
    assert invocation.tempdir == ''
