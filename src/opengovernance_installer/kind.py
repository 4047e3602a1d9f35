"""
OpenGovernance on a local Kind cluster, reached through a port-forward
"""
import logging
import os
import shutil
import subprocess
import time
from typing import Callable, List

from . import helm
from .exceptions import CommandError, InstallerError
from .kubernetes import KUBECTL, start_port_forward, wait_for_pods
from .logger import LOG_DIR, echo
from .messages import show_completion, show_port_forward_instructions
from .models import DEFAULT_CLUSTER_NAME, InstallSettings, InstallType
from .util import check_commands, command_output, dump_yaml, run_process

LOG = logging.getLogger(__name__)

KIND = 'kind'
REQUIRED_TOOLS = (KIND, KUBECTL, 'helm')
CONFIG_FILE = os.path.join(LOG_DIR, 'kind-config.yaml')
# 93% of 8GiB
MIN_MEMORY_BYTES = 7999255104

CLUSTER_CONFIG = {
    'kind': 'Cluster',
    'apiVersion': 'kind.x-k8s.io/v1alpha4',
    'nodes': [{'role': 'control-plane'}],
}


def clusters() -> List[str]:
    return command_output([KIND, 'get', 'clusters']).split()


def validate_memory_allocation(name: str):
    """
    Checks the docker memory limit of the Kind node. Skipped when docker is not on the PATH

    :raises InstallerError: When the node has less than MIN_MEMORY_BYTES
    """
    if shutil.which('docker') is None:
        LOG.info('docker is not installed. Skipping memory validation.')
        return
    node = command_output([KIND, 'get', 'nodes', '--name', name]).split()
    if not node:
        LOG.warning("Could not find the nodes of Kind cluster '%s'.", name)
        return
    limit = command_output(['docker', 'inspect', node[0], '--format={{.HostConfig.Memory}}'])
    try:
        limit_bytes = int(limit)
    except ValueError:
        LOG.warning("Could not read the memory limit of Kind node '%s'.", node[0])
        return
    if limit_bytes == 0:
        LOG.warning("No memory limit set for Kind cluster '%s'. At least 8GiB of memory is recommended.", name)
        return
    gib = limit_bytes / 1024 ** 3
    if limit_bytes < MIN_MEMORY_BYTES:
        raise InstallerError(f"Kind cluster '{name}' has insufficient memory allocated: {gib:.2f}GiB (< 7.44GiB).")
    LOG.info("Kind cluster '%s' has sufficient memory allocated: %.2fGiB.", name, gib)


def create_cluster(name: str, config_file: str = CONFIG_FILE):
    echo("Creating a new Kind Cluster '%s'", name)
    os.makedirs(os.path.dirname(os.path.abspath(config_file)), exist_ok=True)
    with open(config_file, 'w') as f:
        f.write(dump_yaml(CLUSTER_CONFIG))
    try:
        run_process([KIND, 'create', 'cluster', '--name', name, '--config', config_file])
        run_process([KUBECTL, 'config', 'use-context', f'kind-{name}'])
    except subprocess.CalledProcessError as e:
        raise CommandError(f"Failed to create Kind cluster '{name}': {(e.stderr or '').strip()}")
    LOG.info("Set kubectl context to 'kind-%s'", name)


def install_release(settings: InstallSettings, sleep: Callable[[float], None] = time.sleep):
    """
    Basic install of the release into the current cluster, reached through a port-forward to http://localhost:8080
    """
    settings.install_type = InstallType.BASIC
    if helm.release_exists(settings.helm_release, settings.namespace):
        echo("Helm release '%s' already exists in namespace '%s'. Skipping install.", settings.helm_release,
             settings.namespace)
    else:
        helm.install(settings.helm_release, settings.helm_chart, settings.namespace, helm.application_values())
    wait_for_pods(settings.namespace, settings.pods_poll, sleep=sleep)

    proc = start_port_forward(settings.namespace, os.path.join(LOG_DIR, 'port-forward.log'), sleep=sleep)
    if proc is None:
        LOG.warning('Port-forwarding could not be started automatically.')
        show_port_forward_instructions(settings.namespace)
    else:
        echo('You can terminate port-forwarding by killing the background process (PID: %s).', proc.pid)
    return proc


def install(settings: InstallSettings, sleep: Callable[[float], None] = time.sleep):
    """
    Creates the cluster when it does not exist, installs the release and forwards http://localhost:8080 to it
    """
    start = time.time()
    echo('Starting OpenGovernance deployment script.')
    echo('Checking for required tools...')
    check_commands(REQUIRED_TOOLS)
    helm.ensure_repo(settings.helm_repo_name, settings.helm_repo_url)
    settings.install_type = InstallType.BASIC
    name = settings.cluster_name or DEFAULT_CLUSTER_NAME
    settings.cluster_name = name

    if name in clusters():
        echo("Kind cluster '%s' already exists. Reusing it.", name)
        run_process([KUBECTL, 'config', 'use-context', f'kind-{name}'])
    else:
        create_cluster(name)
    validate_memory_allocation(name)
    install_release(settings, sleep)
    show_completion(settings, time.time() - start)
