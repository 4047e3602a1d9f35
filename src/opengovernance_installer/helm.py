"""
Helm operations. Everything logged here also lands in the Helm debug log (see LogUtil.set_helm_log_handler)
"""
import json
import logging
import subprocess
from typing import Mapping, Optional, Sequence

from .exceptions import CommandError
from .logger import echo
from .util import command_output, dump_yaml, run_process

LOG = logging.getLogger(__name__)

HELM = 'helm'
DEFAULT_TIMEOUT = '15m'


def repo_exists(name: str) -> bool:
    output = command_output([HELM, 'repo', 'list'], logger=LOG)
    return any(line.split()[0] == name for line in output.splitlines()[1:] if line.strip())


def ensure_repo(name: str, url: str):
    """
    Adds the chart repository when it is not configured yet and refreshes the index

    :param name: Local repository name
    :param url: Repository URL
    """
    if repo_exists(name):
        LOG.info("Helm repo '%s' already exists.", name)
    else:
        LOG.info("Adding Helm repo '%s'...", name)
        run_process([HELM, 'repo', 'add', name, url], logger=LOG)
    run_process([HELM, 'repo', 'update'], logger=LOG)


def release_exists(release: str, namespace: str) -> bool:
    proc = run_process([HELM, 'status', release, '-n', namespace], check=False, logger=LOG)
    return proc.returncode == 0


def release_status(release: str, namespace: str) -> Optional[str]:
    """
    Status of the release as listed by helm, e.g. `deployed` or `failed`

    :return str: None when the release is not installed
    """
    output = command_output([HELM, 'list', '-n', namespace, '--filter', f'^{release}$', '-o', 'json'], logger=LOG)
    try:
        releases = json.loads(output) if output else []
    except ValueError:
        LOG.warning("Could not read the status of Helm release '%s'.", release)
        return None
    if not releases:
        return None
    return releases[0].get('status') or 'unknown'


def application_values(domain: Optional[str] = None, protocol: str = 'http') -> dict:
    """
    Chart values for the OpenGovernance release

    :param domain: Public hostname. Defaults to localhost
    :param protocol: `http` or `https`, used for the Dex issuer URL
    :return dict:
    """
    domain = domain or 'localhost'
    return {
        'global': {'domain': domain},
        'dex': {'config': {'issuer': f'{protocol}://{domain}/dex'}},
    }


def _run_release(action: str, release: str, chart: str, namespace: str, values: Optional[Mapping],
                 extra_args: Sequence[str]):
    args = [HELM, action, release, chart, '-n', namespace]
    if action == 'install':
        args.append('--create-namespace')
    args.append(f'--timeout={DEFAULT_TIMEOUT}')
    values_yaml = None
    if values:
        values_yaml = dump_yaml(values)
        LOG.debug('Helm values:\n%s', values_yaml)
        args += ['-f', '-']
    args += list(extra_args)
    try:
        return run_process(args, input=values_yaml, logger=LOG)
    except subprocess.CalledProcessError as e:
        LOG.error('Helm %s of %s failed. Check the Helm debug log for details.', action, release)
        raise CommandError(f'helm {action} {release} failed: {(e.stderr or "").strip()}')


def install(release: str, chart: str, namespace: str, values: Optional[Mapping] = None,
            extra_args: Sequence[str] = ()):
    """
    Installs a chart into `namespace`, creating the namespace when needed

    :param release: Release name
    :param chart: Chart reference, e.g. `opengovernance/opengovernance`
    :param namespace: Target namespace
    :param values: Values piped to helm on stdin
    :param extra_args: Additional helm flags, e.g. `--wait`
    """
    echo("Installing Helm release '%s' from chart '%s' in namespace '%s'...", release, chart, namespace)
    proc = _run_release('install', release, chart, namespace, values, extra_args)
    echo("Helm release '%s' installed.", release)
    return proc


def upgrade(release: str, chart: str, namespace: str, values: Optional[Mapping] = None,
            extra_args: Sequence[str] = ()):
    echo("Upgrading Helm release '%s' in namespace '%s'...", release, namespace)
    proc = _run_release('upgrade', release, chart, namespace, values, extra_args)
    echo('Helm release upgraded successfully.')
    return proc
