import json

import pytest
from ruamel.yaml import YAML

from opengovernance_installer import helm
from opengovernance_installer.exceptions import CommandError


def test_application_values():
    assert helm.application_values('demo.opengovernance.io', 'https') == {
        'global': {'domain': 'demo.opengovernance.io'},
        'dex': {'config': {'issuer': 'https://demo.opengovernance.io/dex'}},
    }


def test_application_values_default_to_localhost():
    assert helm.application_values() == {
        'global': {'domain': 'localhost'},
        'dex': {'config': {'issuer': 'http://localhost/dex'}},
    }


def test_ensure_repo_adds_missing_repo(runner):
    runner.add(['helm', 'repo', 'list'], stdout='NAME\tURL\njetstack\thttps://charts.jetstack.io\n')
    helm.ensure_repo('opengovernance', 'https://opengovern.github.io/charts')
    assert runner.commands('helm', 'repo', 'add', 'opengovernance', 'https://opengovern.github.io/charts')
    assert runner.commands('helm', 'repo', 'update')


def test_ensure_repo_existing(runner):
    runner.add(['helm', 'repo', 'list'], stdout='NAME\tURL\nopengovernance\thttps://opengovern.github.io/charts\n')
    helm.ensure_repo('opengovernance', 'https://opengovern.github.io/charts')
    assert not runner.commands('helm', 'repo', 'add')
    assert runner.commands('helm', 'repo', 'update')


def test_ensure_repo_with_no_repositories(runner):
    runner.add(['helm', 'repo', 'list'], returncode=1, stderr='Error: no repositories to show')
    helm.ensure_repo('opengovernance', 'https://opengovern.github.io/charts')
    assert runner.commands('helm', 'repo', 'add', 'opengovernance')


def test_release_exists(runner):
    runner.add(['helm', 'status', 'opengovernance'], returncode=1, stderr='Error: release: not found')
    assert not helm.release_exists('opengovernance', 'opengovernance')
    runner.add(['helm', 'status', 'opengovernance'])
    assert helm.release_exists('opengovernance', 'opengovernance')


def test_install_pipes_values(runner):
    values = helm.application_values('demo.opengovernance.io', 'https')
    helm.install('opengovernance', 'opengovernance/opengovernance', 'opengovernance', values, extra_args=('--wait',))
    call = runner.commands('helm', 'install')[0]
    assert call['args'] == ['helm', 'install', 'opengovernance', 'opengovernance/opengovernance', '-n',
                            'opengovernance', '--create-namespace', '--timeout=15m', '-f', '-', '--wait']
    assert YAML(typ='safe').load(call['input']) == values


def test_install_without_values(runner):
    helm.install('cert-manager', 'jetstack/cert-manager', 'cert-manager',
                 extra_args=('--version', 'v1.11.0', '--set', 'installCRDs=true', '--wait'))
    call = runner.commands('helm', 'install')[0]
    assert '-f' not in call['args']
    assert call['input'] is None
    assert call['args'][-5:] == ['--version', 'v1.11.0', '--set', 'installCRDs=true', '--wait']


def test_upgrade_does_not_create_namespace(runner):
    helm.upgrade('opengovernance', 'opengovernance/opengovernance', 'opengovernance',
                 helm.application_values('demo.opengovernance.io', 'https'))
    call = runner.commands('helm', 'upgrade')[0]
    assert '--create-namespace' not in call['args']
    assert 'https://demo.opengovernance.io/dex' in call['input']


def test_install_failure(runner):
    runner.add(['helm', 'install'], returncode=1, stderr='Error: INSTALLATION FAILED: timed out')
    with pytest.raises(CommandError, match='timed out'):
        helm.install('opengovernance', 'opengovernance/opengovernance', 'opengovernance')


@pytest.mark.parametrize('stdout,status', [
    (json.dumps([{'name': 'opengovernance', 'status': 'deployed'}]), 'deployed'),
    (json.dumps([{'name': 'opengovernance', 'status': 'failed'}]), 'failed'),
    (json.dumps([{'name': 'opengovernance'}]), 'unknown'),
    ('[]', None),
    ('not json', None),
])
def test_release_status(runner, stdout, status):
    runner.add(['helm', 'list'], stdout=stdout)
    assert helm.release_status('opengovernance', 'opengovernance') == status
    assert runner.calls[0]['args'] == ['helm', 'list', '-n', 'opengovernance', '--filter', '^opengovernance$',
                                       '-o', 'json']


def test_release_status_when_helm_fails(runner):
    runner.add(['helm', 'list'], returncode=1, stderr='Kubernetes cluster unreachable')
    assert helm.release_status('opengovernance', 'opengovernance') is None
