"""
Cluster infrastructure through Terraform or OpenTofu, using the modules of the deploy-opengovernance repository
"""
import logging
import os
import shutil
import subprocess
from typing import Mapping, Optional

from .exceptions import CommandError
from .kubernetes import cluster_api_available
from .logger import echo
from .util import command_output, run_process

LOG = logging.getLogger(__name__)
log = LOG  # alias

AWS_INFRA_DIR = os.path.join('aws', 'eks')
PLAN_FILE = 'plan.tfplan'
CONFIGURE_KUBECTL_OUTPUT = 'configure_kubectl'
REGION_OUTPUT = 'aws_region'


def clone_repository(url: str, dest: str) -> str:
    """
    Clones `url` into `dest`. An existing checkout is removed first so the latest modules are always used

    :param url: Git repository URL
    :param dest: Target directory
    :return str: `dest`
    """
    if os.path.isdir(dest):
        log.info('Removing existing repository directory %s', dest)
        shutil.rmtree(dest)
    os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
    echo('Cloning repository from %s to %s...', url, dest)
    run_process(['git', 'clone', url, dest])
    return dest


def deploy(binary: str, infra_dir: str, variables: Optional[Mapping[str, str]] = None):
    """
    Runs init, plan and apply in `infra_dir`

    :param binary: `tofu` or `terraform`
    :param infra_dir: Directory holding the root module
    :param variables: `-var` values passed to plan. Empty values are skipped
    """
    plan_args = [binary, 'plan']
    for key, value in (variables or {}).items():
        if value:
            plan_args += ['-var', f'{key}={value}']
    plan_args.append(f'-out={PLAN_FILE}')

    echo('Deploying infrastructure with %s. This may take 10-15 minutes...', binary)
    try:
        run_process([binary, 'init', '-input=false'], cwd=infra_dir)
        run_process(plan_args, cwd=infra_dir)
        run_process([binary, 'apply', '-input=false', PLAN_FILE], cwd=infra_dir)
    except subprocess.CalledProcessError as e:
        raise CommandError(f"'{' '.join(e.cmd[:2])}' failed: {(e.stderr or '').strip()}")
    finally:
        plan_path = os.path.join(infra_dir, PLAN_FILE)
        if os.path.exists(plan_path):
            os.remove(plan_path)
    echo('Infrastructure deployment completed.')


def output(binary: str, infra_dir: str, name: str) -> str:
    return command_output([binary, 'output', '-raw', name], cwd=infra_dir)


def configure_kubectl(binary: str, infra_dir: str):
    """
    Runs the kubeconfig command published by the module (`aws eks update-kubeconfig ...`) and checks the cluster answers
    """
    command = output(binary, infra_dir, CONFIGURE_KUBECTL_OUTPUT)
    if not command:
        raise CommandError(f"Failed to retrieve '{CONFIGURE_KUBECTL_OUTPUT}' output from {binary}.")
    log.info('Configuring kubectl with: %s', command)
    try:
        run_process(['sh', '-c', command], cwd=infra_dir)
    except subprocess.CalledProcessError as e:
        raise CommandError(f'Failed to configure kubectl: {(e.stderr or "").strip()}')
    if not cluster_api_available():
        raise CommandError('kubectl is configured but the cluster is not reachable.')
    echo('kubectl configured successfully.')
