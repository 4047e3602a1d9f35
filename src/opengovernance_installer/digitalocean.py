"""
OpenGovernance on DigitalOcean Kubernetes

Creates the cluster with doctl, then installs the release behind ingress-nginx. HTTPS certificates come from
Let's Encrypt through cert-manager.
"""
import logging
import subprocess
import time
from typing import Callable, List

from . import helm
from .exceptions import CommandError, InstallerError, ValidationError
from .kubernetes import (apply_manifest, cluster_api_available, cluster_issuer_manifest, detect_and_unset_context,
                         ensure_namespace, nginx_ingress_manifest, remove_conflicting_cluster_role, resource_exists,
                         wait_for_cluster_issuer, wait_for_ingress_ip, wait_for_nodes, wait_for_pods)
from .logger import echo, echo_detail
from .messages import show_a_record_instructions, show_completion, show_port_forward_instructions
from .models import DEFAULT_CLUSTER_NAME, DEFAULT_DO_REGION, InstallSettings, InstallType
from .prompts import Prompt, confirm, confirm_settings, resolve_install_type
from .util import check_commands, command_output, run_process
from .validation import validate_cluster_name

LOG = logging.getLogger(__name__)

DOCTL = 'doctl'
REQUIRED_TOOLS = ('kubectl', 'helm', DOCTL)
NODE_POOL = 'name=main-pool;size=g-4vcpu-16gb-intel;count=3'
MIN_READY_NODES = 3
DEFAULT_INSTALL_TYPE = InstallType.HTTPS

ADDITIONAL_REPOS = (
    ('ingress-nginx', 'https://kubernetes.github.io/ingress-nginx'),
    ('jetstack', 'https://charts.jetstack.io'),
)
CERT_MANAGER_RELEASE = 'cert-manager'
CERT_MANAGER_CHART = 'jetstack/cert-manager'
CERT_MANAGER_NAMESPACE = 'cert-manager'
CERT_MANAGER_VERSION = 'v1.11.0'
INGRESS_NGINX_RELEASE = 'ingress-nginx'
INGRESS_NGINX_CHART = 'ingress-nginx/ingress-nginx'


def check_prerequisites(settings: InstallSettings):
    echo('Checking for required tools...')
    check_commands(REQUIRED_TOOLS)
    if run_process([DOCTL, 'account', 'get'], check=False).returncode != 0:
        raise InstallerError('doctl is not configured properly. Please run \'doctl auth init\' before proceeding.')
    LOG.info('doctl is configured.')
    helm.ensure_repo(settings.helm_repo_name, settings.helm_repo_url)
    for name, url in ADDITIONAL_REPOS:
        helm.ensure_repo(name, url)
    LOG.info('Checking Prerequisites...Completed')


def cluster_exists(name: str) -> bool:
    return run_process([DOCTL, 'kubernetes', 'cluster', 'get', name], check=False).returncode == 0


def available_regions() -> List[str]:
    output = command_output([DOCTL, 'kubernetes', 'options', 'regions'])
    return [line.split()[0] for line in output.splitlines()[1:] if line.strip()]


def choose_cluster_name(settings: InstallSettings, prompt: Prompt = input) -> str:
    """
    Uses the requested (or default) name when it is free, otherwise asks for another one

    :raises ValidationError: In silent mode when the name is invalid or taken
    """
    name = settings.cluster_name or DEFAULT_CLUSTER_NAME
    while True:
        try:
            validate_cluster_name(name)
        except ValidationError as e:
            error = str(e)
        else:
            if not cluster_exists(name):
                return name
            error = f"A Kubernetes cluster named '{name}' already exists. Please choose a different name."
        if settings.silent:
            raise ValidationError(error)
        LOG.error(error)
        name = prompt('Enter the name for the new DigitalOcean Kubernetes cluster: ').strip()


def choose_region(settings: InstallSettings, prompt: Prompt = input) -> str:
    region = settings.region or DEFAULT_DO_REGION
    if settings.region or settings.silent:
        return region
    echo("Current default region is '%s'.", region)
    if not confirm('Do you wish to change the region? (y/N): ', prompt):
        LOG.info("Using default region '%s'.", region)
        return region

    regions = available_regions()
    if not regions:
        raise InstallerError("Failed to retrieve available regions. Please ensure 'doctl' is authenticated and has "
                             "the necessary permissions.")
    echo('Available Regions:')
    for index, name in enumerate(regions, 1):
        echo_detail('%2d. %s', index, name)
    while True:
        selected = prompt(f'Enter the desired region from the above list [Default: {region}]: ').strip() or region
        if selected in regions:
            LOG.info("Region set to '%s'.", selected)
            return selected
        LOG.error('Invalid region selection. Please choose a region from the available list.')


def create_cluster(settings: InstallSettings, prompt: Prompt = input, sleep: Callable[[float], None] = time.sleep):
    """
    Creates a three node cluster, saves its kubeconfig and waits for the nodes
    """
    name = choose_cluster_name(settings, prompt)
    region = choose_region(settings, prompt)
    echo("Creating DigitalOcean Kubernetes cluster '%s' in region '%s'...", name, region)
    echo('This step may take 3-5 minutes.')
    try:
        run_process([DOCTL, 'kubernetes', 'cluster', 'create', name, '--region', region,
                     '--node-pool', NODE_POOL, '--wait'])
        run_process([DOCTL, 'kubernetes', 'cluster', 'kubeconfig', 'save', name])
    except subprocess.CalledProcessError as e:
        raise CommandError(f"Failed to create cluster '{name}': {(e.stderr or '').strip()}")
    LOG.info("Cluster '%s' created successfully.", name)
    settings.cluster_name = name
    settings.region = region
    wait_for_nodes(MIN_READY_NODES, settings.nodes_poll, sleep=sleep)


def cert_manager_installed() -> bool:
    if helm.release_exists(CERT_MANAGER_RELEASE, CERT_MANAGER_NAMESPACE):
        return True
    return resource_exists('deployment', CERT_MANAGER_RELEASE, CERT_MANAGER_NAMESPACE)


def setup_cert_manager(settings: InstallSettings, sleep: Callable[[float], None] = time.sleep):
    echo("Setting up Cert-Manager and Let's Encrypt Issuer. (Expected time: 1-2 minutes)")
    if cert_manager_installed():
        LOG.info('Cert-Manager is already installed. Skipping installation.')
    else:
        helm.install(CERT_MANAGER_RELEASE, CERT_MANAGER_CHART, CERT_MANAGER_NAMESPACE,
                     extra_args=('--version', CERT_MANAGER_VERSION, '--set', 'installCRDs=true', '--wait'))
    if settings.install_type is InstallType.HTTPS:
        apply_manifest(cluster_issuer_manifest(settings.email))
        LOG.info("ClusterIssuer for Let's Encrypt created.")
        wait_for_cluster_issuer(settings.issuer_poll, sleep=sleep)
    else:
        LOG.info('HTTPS is not enabled. Skipping ClusterIssuer setup.')


def setup_ingress_controller(settings: InstallSettings, sleep: Callable[[float], None] = time.sleep) -> str:
    """
    Installs ingress-nginx into the release namespace

    :return str: External IP of the controller service
    """
    echo('Setting up Ingress Controller and waiting for external IP. (Expected time: 2-5 minutes)')
    ensure_namespace(settings.namespace)
    remove_conflicting_cluster_role(settings.namespace)
    if helm.release_exists(INGRESS_NGINX_RELEASE, settings.namespace):
        LOG.info('Ingress Controller already installed. Skipping installation.')
    else:
        helm.install(INGRESS_NGINX_RELEASE, INGRESS_NGINX_CHART, settings.namespace, extra_args=('--wait',))
    return wait_for_ingress_ip(settings.namespace, settings.ingress_ip_poll, sleep=sleep)


def install_application(settings: InstallSettings):
    domain = settings.domain if settings.install_type.uses_ingress else None
    values = helm.application_values(domain, settings.protocol)
    if helm.release_exists(settings.helm_release, settings.namespace):
        return helm.upgrade(settings.helm_release, settings.helm_chart, settings.namespace, values,
                            extra_args=('--wait',))
    return helm.install(settings.helm_release, settings.helm_chart, settings.namespace, values,
                        extra_args=('--wait',))


def install(settings: InstallSettings, prompt: Prompt = input, sleep: Callable[[float], None] = time.sleep):
    """
    Full installation on DigitalOcean

    :param settings: Run settings. Updated with the resolved installation type, cluster and region
    :param prompt: Function used for interactive questions
    :param sleep: Sleep function used by the polling loops
    """
    start = time.time()
    check_prerequisites(settings)
    resolve_install_type(settings, DEFAULT_INSTALL_TYPE, prompt)
    confirm_settings(settings, DEFAULT_INSTALL_TYPE, prompt)

    if settings.skip_infra:
        echo('Skipping cluster creation.')
        if not cluster_api_available():
            raise InstallerError('No reachable Kubernetes cluster. Configure kubectl or run without '
                                 '--skip-infra-setup.')
    else:
        detect_and_unset_context()
        create_cluster(settings, prompt, sleep)

    external_ip = None
    if settings.install_type.uses_ingress:
        setup_cert_manager(settings, sleep)
        external_ip = setup_ingress_controller(settings, sleep)
        try:
            install_application(settings)
        except CommandError:
            if settings.install_type is not InstallType.HTTPS:
                raise
            LOG.error('HTTPS installation failed. Proceeding with HTTP installation.')
            settings.install_type = InstallType.HTTP
            install_application(settings)
        echo('Deploying Ingress %s TLS. (Expected time: 1-3 minutes)',
             'with' if settings.install_type is InstallType.HTTPS else 'without')
        apply_manifest(nginx_ingress_manifest(settings.ingress_name, settings.domain,
                                              https=settings.install_type is InstallType.HTTPS),
                       namespace=settings.namespace)
    else:
        echo('Proceeding with OpenGovernance Basic Install (No Ingress). (Expected time: 7-10 minutes)')
        install_application(settings)

    wait_for_pods(settings.namespace, settings.pods_poll, sleep=sleep)
    show_completion(settings, time.time() - start)
    if external_ip:
        show_a_record_instructions(settings.domain, external_ip)
    else:
        show_port_forward_instructions(settings.namespace)
