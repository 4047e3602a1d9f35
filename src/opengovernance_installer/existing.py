"""
OpenGovernance on the cluster kubectl already points at

Shows which provider CLIs are usable and what the current cluster is, then either installs into that cluster or
creates a new one with one of the provider installers. An existing release is only reconfigured when it is healthy.
"""
import logging
import shutil
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from . import aws, digitalocean, helm, kind
from .exceptions import InstallerError, ValidationError
from .kubernetes import KUBECTL, cluster_details
from .logger import echo, echo_banner
from .messages import show_cluster_details, show_completion, show_provider_clis
from .models import ClusterInfo, InstallSettings, Provider
from .prompts import Prompt, confirm
from .util import check_commands, command_output

LOG = logging.getLogger(__name__)
log = LOG  # alias

REQUIRED_TOOLS = (KUBECTL, 'helm')
DEPLOYED = 'deployed'
FAILED = 'failed'

DEPLOY_EXISTING = 'existing'
CREATE_NEW = 'new'
EXIT = 'exit'

# Provider name, CLI and the command that prints the signed in account
PROVIDER_CLI_CHECKS = (
    ('Azure', 'az', ['az', 'account', 'show', '--query', 'name', '-o', 'tsv']),
    ('GCP', 'gcloud', ['gcloud', 'auth', 'list', '--filter=status:ACTIVE', '--format=value(account)']),
    ('DigitalOcean', 'doctl', ['doctl', 'account', 'get', '--format', 'Email', '--no-header']),
)

NEW_CLUSTER_LABELS = {
    Provider.AWS: 'AWS (EKS)',
    Provider.DIGITALOCEAN: 'DigitalOcean Kubernetes',
    Provider.KIND: 'Local Kind cluster',
}


@dataclass
class ProviderCli:
    name: str
    command: str
    available: bool
    detail: str


def _aws_cli(session=None) -> ProviderCli:
    if shutil.which('aws') is None:
        return ProviderCli('AWS', 'aws', False, 'CLI not found')
    try:
        identity = aws.check_authenticated(session or aws.aws_session())
    except InstallerError:
        log.error('AWS CLI is installed but not fully configured.')
        return ProviderCli('AWS', 'aws', False, 'CLI not configured')
    return ProviderCli('AWS', 'aws', True, f"Account ID: {identity.get('Account')}, "
                                           f"IAM Principal ARN: {identity.get('Arn')}")


def check_provider_clis(session=None) -> List[ProviderCli]:
    """
    Finds out which cloud CLIs are installed and signed in

    :param session: boto3 Session used for the AWS check
    :return list: One ProviderCli per provider: AWS, Azure, GCP and DigitalOcean
    """
    clis = [_aws_cli(session)]
    for name, command, args in PROVIDER_CLI_CHECKS:
        if shutil.which(command) is None:
            clis.append(ProviderCli(name, command, False, 'CLI not found'))
            continue
        account = command_output(args)
        if account:
            log.info('%s CLI is installed and configured.', name)
            clis.append(ProviderCli(name, command, True, account))
        else:
            log.error('%s CLI is installed but not fully configured.', name)
            clis.append(ProviderCli(name, command, False, 'CLI not configured'))
    return clis


def check_existing_release(settings: InstallSettings, prompt: Prompt = input) -> bool:
    """
    Looks for an earlier OpenGovernance release in the namespace

    :return bool: False when a healthy release was found and the user chose to leave it alone
    :raises InstallerError: When the release is in any state other than deployed
    """
    status = helm.release_status(settings.helm_release, settings.namespace)
    if status is None:
        echo('Checking for any existing OpenGovernance Installation...No existing Installations found.')
        return True
    if status == DEPLOYED:
        echo('An existing OpenGovernance installation was found and is healthy.')
        if settings.silent or confirm('Do you want to reconfigure it? (y/N): ', prompt):
            log.info('Proceeding with reconfiguration.')
            return True
        echo('Exiting as per user request.')
        return False
    if status == FAILED:
        raise InstallerError(f"OpenGovernance is installed but not in 'deployed' state (current status: {status}).")
    raise InstallerError(f"OpenGovernance is in an unexpected state ('{status}').")


def _choose(title: str, options: List[tuple], prompt: Prompt):
    echo(title)
    for number, (_, label) in enumerate(options, 1):
        echo('%s. %s', number, label)
    while True:
        answer = prompt(f'Select an option (1-{len(options)}): ').strip()
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1][0]
        LOG.error('Invalid choice. Please select a number between 1 and %s.', len(options))


def choose_target(settings: InstallSettings, cluster: Optional[ClusterInfo], prompt: Prompt = input) -> str:
    """
    Asks whether to use the current cluster or create a new one. Silent runs always use the current cluster

    :raises ValidationError: In silent mode when kubectl is not connected to a cluster
    """
    if settings.silent:
        if cluster is None:
            raise ValidationError('No reachable Kubernetes cluster. Configure kubectl before a silent install.')
        return DEPLOY_EXISTING
    options = []
    if cluster is not None:
        options.append((DEPLOY_EXISTING, f'Kubernetes Cluster ({cluster.provider} / {cluster.node_count} nodes)'))
    options.append((CREATE_NEW, 'Create a new cluster'))
    options.append((EXIT, 'Exit'))
    return _choose('Where would you like to deploy OpenGovernance to?', options, prompt)


def choose_provider(prompt: Prompt = input) -> Provider:
    return _choose('Select the platform for the new cluster:', list(NEW_CLUSTER_LABELS.items()), prompt)


def deploy_to_cluster(settings: InstallSettings, cluster: ClusterInfo, prompt: Prompt = input, session=None,
                      sleep: Callable[[float], None] = time.sleep):
    """
    Installs into the current cluster. EKS and DigitalOcean clusters get their provider install without the
    infrastructure step; any other cluster gets the basic install
    """
    settings.skip_infra = True
    if cluster.provider == 'AWS':
        echo('Detected that the current Kubernetes Cluster is hosted on AWS (EKS).')
        settings.provider = Provider.AWS
        return aws.install(settings, prompt, session=session, sleep=sleep)
    if cluster.provider == 'DigitalOcean':
        echo('Detected that the current Kubernetes Cluster is hosted on DigitalOcean.')
        settings.provider = Provider.DIGITALOCEAN
        return digitalocean.install(settings, prompt, sleep=sleep)

    start = time.time()
    echo('Installing OpenGovernance via Helm on the %s cluster.', cluster.provider)
    helm.ensure_repo(settings.helm_repo_name, settings.helm_repo_url)
    kind.install_release(settings, sleep)
    show_completion(settings, time.time() - start)


def create_cluster(settings: InstallSettings, prompt: Prompt = input, session=None,
                   sleep: Callable[[float], None] = time.sleep):
    settings.skip_infra = False
    settings.provider = choose_provider(prompt)
    if settings.provider is Provider.AWS:
        return aws.install(settings, prompt, session=session, sleep=sleep)
    if settings.provider is Provider.DIGITALOCEAN:
        return digitalocean.install(settings, prompt, sleep=sleep)
    return kind.install(settings, sleep=sleep)


def install(settings: InstallSettings, prompt: Prompt = input, session=None,
            sleep: Callable[[float], None] = time.sleep):
    """
    Install driven by what is already configured on this machine

    :param settings: Run settings. The provider is replaced by the one detected or chosen
    :param prompt: Function used for interactive questions
    :param session: boto3 Session for the AWS checks. Built from the default configuration when omitted
    :param sleep: Sleep function used by the polling loops
    """
    echo_banner('OpenGovernance Installer')
    check_commands(REQUIRED_TOOLS)
    show_provider_clis(check_provider_clis(session))
    cluster = cluster_details()
    show_cluster_details(cluster)

    target = choose_target(settings, cluster, prompt)
    if target == EXIT:
        echo('Exiting.')
        return None
    if target == CREATE_NEW:
        return create_cluster(settings, prompt, session, sleep)
    if not check_existing_release(settings, prompt):
        return None
    return deploy_to_cluster(settings, cluster, prompt, session, sleep)
