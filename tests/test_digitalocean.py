import json

import pytest

from opengovernance_installer import digitalocean
from opengovernance_installer.exceptions import CommandError, InstallerError, ValidationError
from opengovernance_installer.models import InstallType, Provider

NODES = '\n'.join(f'main-pool-{i}   Ready   <none>   2m   v1.31.1' for i in range(3))
PODS = 'opengovernance-0   1/1   Running   0   1m\nmigrator-job-abc   0/1   Completed   0   1m\n'
READY_ISSUER = json.dumps({'status': {'conditions': [{'type': 'Ready', 'status': 'True'}]}})
CONTROLLER = json.dumps({'status': {'loadBalancer': {'ingress': [{'ip': '203.0.113.10'}]}}})


@pytest.fixture
def do_settings(settings):
    settings.provider = Provider.DIGITALOCEAN
    settings.region = 'nyc3'
    settings.email = 'ops@example.com'
    return settings


@pytest.fixture
def cluster_runner(runner):
    runner.add(('helm', 'status'), returncode=1)
    runner.add(('kubectl', 'get', 'clusterissuer'), stdout=READY_ISSUER)
    runner.add(('kubectl', 'get', 'svc'), stdout=CONTROLLER)
    runner.add(('kubectl', 'get', 'pods'), stdout=PODS)
    runner.add(('kubectl', 'get', 'deployment'), returncode=1)
    return runner


def _prompt(*answers):
    queue = list(answers)
    return lambda question: queue.pop(0)


def test_prerequisites_need_doctl_auth(do_settings, runner, all_tools):
    runner.add(('doctl', 'account', 'get'), returncode=1)
    with pytest.raises(InstallerError, match='doctl auth init'):
        digitalocean.check_prerequisites(do_settings)


def test_prerequisites_add_repositories(do_settings, runner, all_tools):
    digitalocean.check_prerequisites(do_settings)
    added = [c['args'][3] for c in runner.commands('helm', 'repo', 'add')]
    assert added == ['opengovernance', 'ingress-nginx', 'jetstack']


def test_choose_cluster_name_taken_in_silent_mode(do_settings, runner):
    with pytest.raises(ValidationError, match='already exists'):
        digitalocean.choose_cluster_name(do_settings)


def test_choose_cluster_name_invalid_in_silent_mode(do_settings, runner):
    do_settings.cluster_name = 'Bad_Name'
    with pytest.raises(ValidationError, match='Invalid cluster name format'):
        digitalocean.choose_cluster_name(do_settings)
    assert not runner.commands('doctl')


def test_choose_cluster_name_asks_again(do_settings, runner):
    do_settings.silent = False
    runner.add(('doctl', 'kubernetes', 'cluster', 'get'), returncode=1)
    runner.add(('doctl', 'kubernetes', 'cluster', 'get', 'opengovernance'), returncode=0)
    assert digitalocean.choose_cluster_name(do_settings, _prompt('Bad_Name', 'og-demo')) == 'og-demo'


def test_choose_region_from_list(do_settings, runner):
    do_settings.region = None
    do_settings.silent = False
    runner.add(('doctl', 'kubernetes', 'options', 'regions'),
               stdout='Slug    Name\nnyc1    New York 1\nams3    Amsterdam 3\n')
    assert digitalocean.choose_region(do_settings, _prompt('y', 'mars1', 'ams3')) == 'ams3'


def test_choose_region_default(do_settings):
    do_settings.region = None
    assert digitalocean.choose_region(do_settings) == 'nyc3'


def test_create_cluster_waits_for_nodes(do_settings, runner, fake_sleep):
    runner.add(('doctl', 'kubernetes', 'cluster', 'get'), returncode=1)
    runner.add_sequence(('kubectl', 'get', 'nodes'), [(0, 'main-pool-0   NotReady   <none>   1m   v1.31.1', ''),
                                                      (0, NODES, '')])
    digitalocean.create_cluster(do_settings, sleep=fake_sleep)
    create = runner.commands('doctl', 'kubernetes', 'cluster', 'create')[0]['args']
    assert create[4:] == ['opengovernance', '--region', 'nyc3', '--node-pool',
                          'name=main-pool;size=g-4vcpu-16gb-intel;count=3', '--wait']
    assert runner.commands('doctl', 'kubernetes', 'cluster', 'kubeconfig', 'save', 'opengovernance')
    assert len(runner.commands('kubectl', 'get', 'nodes')) == 2


def test_create_cluster_failure(do_settings, runner, fake_sleep):
    runner.add(('doctl', 'kubernetes', 'cluster', 'get'), returncode=1)
    runner.add(('doctl', 'kubernetes', 'cluster', 'create'), returncode=1, stderr='quota exceeded')
    with pytest.raises(CommandError, match='quota exceeded'):
        digitalocean.create_cluster(do_settings, sleep=fake_sleep)


def test_conflicting_cluster_role_is_removed(do_settings, cluster_runner, fake_sleep):
    role = {'metadata': {'annotations': {'meta.helm.sh/release-namespace': 'other'}}}
    cluster_runner.add(('kubectl', 'get', 'clusterrole'), stdout=json.dumps(role))
    assert digitalocean.setup_ingress_controller(do_settings, fake_sleep) == '203.0.113.10'
    assert cluster_runner.commands('kubectl', 'delete', 'clusterrole', 'ingress-nginx')


def test_https_install_falls_back_to_http(do_settings, cluster_runner, all_tools, fake_sleep):
    do_settings.install_type = InstallType.HTTPS
    do_settings.skip_infra = True
    cluster_runner.add_sequence(('helm', 'install', 'opengovernance'), [(1, '', 'boom'), (0, '', '')])

    digitalocean.install(do_settings, sleep=fake_sleep)

    assert do_settings.install_type is InstallType.HTTP
    installs = cluster_runner.commands('helm', 'install', 'opengovernance')
    assert len(installs) == 2
    assert 'issuer: https://demo.opengovernance.io/dex' in installs[0]['input']
    assert 'issuer: http://demo.opengovernance.io/dex' in installs[1]['input']
    cert_manager = cluster_runner.commands('helm', 'install', 'cert-manager')[0]['args']
    assert '--version' in cert_manager and 'v1.11.0' in cert_manager
    ingress = cluster_runner.commands('kubectl', 'apply', '-n', 'opengovernance')[-1]['input']
    assert 'tls' not in ingress
    assert 'host: demo.opengovernance.io' in ingress


def test_http_install_failure_is_not_retried(do_settings, cluster_runner, all_tools, fake_sleep):
    do_settings.install_type = InstallType.HTTP
    do_settings.skip_infra = True
    cluster_runner.add(('helm', 'install', 'opengovernance'), returncode=1, stderr='boom')
    with pytest.raises(CommandError):
        digitalocean.install(do_settings, sleep=fake_sleep)
    assert len(cluster_runner.commands('helm', 'install', 'opengovernance')) == 1
    assert not cluster_runner.commands('kubectl', 'apply', '-f')


def test_basic_install(do_settings, cluster_runner, all_tools, fake_sleep):
    do_settings.install_type = InstallType.BASIC
    do_settings.skip_infra = True
    cluster_runner.add(('kubectl', 'config', 'current-context'), stdout='do-nyc3-opengovernance\n')
    digitalocean.install(do_settings, sleep=fake_sleep)
    installs = cluster_runner.commands('helm', 'install')
    assert [c['args'][2] for c in installs] == ['opengovernance']
    assert 'domain: localhost' in installs[0]['input']
    assert '--wait' in installs[0]['args']
    assert not cluster_runner.commands('kubectl', 'apply')
    assert not cluster_runner.commands('kubectl', 'config', 'unset')


def test_skip_infra_without_cluster(do_settings, runner, all_tools):
    do_settings.install_type = InstallType.BASIC
    do_settings.skip_infra = True
    runner.add(('kubectl', 'cluster-info'), returncode=1)
    with pytest.raises(InstallerError, match='No reachable Kubernetes cluster'):
        digitalocean.install(do_settings)
