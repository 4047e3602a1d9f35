import fnmatch
import json
import logging
import re
import subprocess
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .exceptions import CommandError, InstallerError
from .logger import echo
from .models import ClusterInfo, PollConfig
from .util import command_output, dump_yaml, run_process, wait_until

LOG = logging.getLogger(__name__)
log = LOG

KUBECTL = 'kubectl'
APP_SERVICE = 'nginx-proxy'
APP_SERVICE_PORT = 80
LOCAL_PORT = 8080
READY_POD_STATES = ('Running', 'Completed')
RESTART_SELECTORS = ('app=nginx-proxy', 'app.kubernetes.io/name=dex')
CLUSTER_ISSUER_NAME = 'letsencrypt'
INGRESS_CONTROLLER_SERVICE = 'ingress-nginx-controller'
TLS_SECRET_NAME = 'opengovernance-tls'
ACME_SERVER = 'https://acme-v02.api.letsencrypt.org/directory'
DNS_SERVER = '8.8.8.8'
PORT_FORWARD_SETTLE_SECONDS = 5
ANSI_ESCAPE_RE = re.compile(r'\x1b\[[0-9;]*m')
TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
MAX_READY_SECONDS = 86400
TIMESTAMP_UNAVAILABLE = 'Timestamp Unavailable'
UNREALISTIC_TIME = 'Unrealistic Time Difference'
INCOMPLETE_DATA = 'Incomplete Data'

# Checked in order, the first provider with a matching marker wins
PROVIDER_MARKERS = (
    ('Azure', ('.azmk8s.io', 'azure')),
    ('AWS', ('.eks.amazonaws.com', 'amazonaws.com')),
    ('GCP', ('.gke.io', 'gke')),
    ('DigitalOcean', ('.k8s.ondigitalocean.com', 'digitalocean', 'do-')),
    ('Minikube', ('minikube',)),
    ('Kind', ('kind',)),
)
UNKNOWN_PROVIDER = 'Unknown'

# Pods started together by one component are reported as a single workload
POD_GROUPS = (
    ('postgres', '*-postgresql-*'),
    ('opensearch', 'opensearch-*'),
    ('vault', '*-vault-*'),
    ('keda', 'keda-*'),
    ('demo', '*-demo-*'),
    ('nats', '*-nats-*'),
    ('auth', 'auth-*'),
)

ALB_INGRESS_ANNOTATIONS = {
    'alb.ingress.kubernetes.io/scheme': 'internet-facing',
    'alb.ingress.kubernetes.io/target-type': 'ip',
    'alb.ingress.kubernetes.io/backend-protocol': 'HTTP',
    'kubernetes.io/ingress.class': 'alb',
}
LISTEN_PORTS_ANNOTATION = 'alb.ingress.kubernetes.io/listen-ports'
CERTIFICATE_ARN_ANNOTATION = 'alb.ingress.kubernetes.io/certificate-arn'


def current_context() -> str:
    return command_output([KUBECTL, 'config', 'current-context'])


def detect_and_unset_context():
    """
    Clears the active kubectl context so nothing is installed into a cluster the user did not pick
    """
    context = current_context()
    if not context:
        log.info('No kubectl context found.')
        return None
    log.info('Current kubectl context: %s', context)
    proc = run_process([KUBECTL, 'config', 'unset', 'current-context'], check=False)
    if proc.returncode == 0:
        log.info('Successfully unset the current kubectl context.')
    else:
        log.error('Failed to unset the current kubectl context.')
    return context


def cluster_api_available() -> bool:
    """
    Checks to see if the Cluster's API endpoint is alive

    :return bool: True if API available. False, otherwise
    """
    proc = run_process([KUBECTL, 'cluster-info'], check=False)
    if proc.returncode == 0:
        log.info('Cluster is available for connections')
        return True
    log.info('Cluster is not available for connections yet')
    return False


def apply_manifest(document: Mapping, namespace: Optional[str] = None):
    """
    Renders `document` as YAML and pipes it to `kubectl apply`

    :param document: Kubernetes object as a mapping
    :param namespace: Namespace to apply into, when the manifest does not set one
    """
    manifest = dump_yaml(document)
    for nonempty_line in [line for line in manifest.splitlines() if line]:
        log.debug(nonempty_line)
    args = [KUBECTL, 'apply']
    if namespace:
        args += ['-n', namespace]
    args += ['-f', '-']
    try:
        run_process(args, input=manifest)
    except subprocess.CalledProcessError as e:
        raise CommandError(f"Failed to apply {document.get('kind', 'manifest')}: {(e.stderr or '').strip()}")


def get_resource(kind: str, name: str, namespace: Optional[str] = None) -> Optional[dict]:
    """
    Fetches a single object as JSON

    :return dict: The object, or None when it does not exist or the API is unreachable
    """
    args = [KUBECTL, 'get', kind, name]
    if namespace:
        args += ['-n', namespace]
    args += ['-o', 'json']
    output = command_output(args)
    if not output:
        return None
    try:
        return json.loads(output)
    except ValueError:
        log.debug('Could not parse %s/%s as JSON', kind, name)
        return None


def resource_exists(kind: str, name: str, namespace: Optional[str] = None) -> bool:
    args = [KUBECTL, 'get', kind, name]
    if namespace:
        args += ['-n', namespace]
    return run_process(args, check=False).returncode == 0


#
# Manifests
#

def _backend_rule(domain: str) -> dict:
    return {
        'host': domain,
        'http': {
            'paths': [{
                'path': '/',
                'pathType': 'Prefix',
                'backend': {'service': {'name': APP_SERVICE, 'port': {'number': APP_SERVICE_PORT}}}
            }]
        }
    }


def alb_ingress_manifest(name: str, namespace: str, domain: str, certificate_arn: Optional[str] = None) -> dict:
    """
    Ingress served by the AWS Load Balancer Controller. HTTPS is enabled when a certificate ARN is given
    """
    annotations = dict(ALB_INGRESS_ANNOTATIONS)
    if certificate_arn:
        annotations[LISTEN_PORTS_ANNOTATION] = '[{"HTTP": 80}, {"HTTPS":443}]'
        annotations[CERTIFICATE_ARN_ANNOTATION] = certificate_arn
    else:
        annotations[LISTEN_PORTS_ANNOTATION] = '[{"HTTP": 80}]'
    return {
        'apiVersion': 'networking.k8s.io/v1',
        'kind': 'Ingress',
        'metadata': {'namespace': namespace, 'name': name, 'annotations': annotations},
        'spec': {'ingressClassName': 'alb', 'rules': [_backend_rule(domain)]},
    }


def nginx_ingress_manifest(name: str, domain: Optional[str], https: bool) -> dict:
    """
    Ingress served by ingress-nginx. With `https` the certificate comes from the cert-manager ClusterIssuer
    """
    manifest = {
        'apiVersion': 'networking.k8s.io/v1',
        'kind': 'Ingress',
        'metadata': {'name': name},
        'spec': {'ingressClassName': 'nginx', 'rules': [_backend_rule(domain or 'localhost')]},
    }
    if https:
        manifest['metadata']['annotations'] = {
            'cert-manager.io/cluster-issuer': CLUSTER_ISSUER_NAME,
            'nginx.ingress.kubernetes.io/ssl-redirect': 'true',
        }
        manifest['spec']['tls'] = [{'hosts': [domain], 'secretName': TLS_SECRET_NAME}]
    return manifest


def cluster_issuer_manifest(email: str) -> dict:
    return {
        'apiVersion': 'cert-manager.io/v1',
        'kind': 'ClusterIssuer',
        'metadata': {'name': CLUSTER_ISSUER_NAME},
        'spec': {
            'acme': {
                'server': ACME_SERVER,
                'email': email,
                'privateKeySecretRef': {'name': 'letsencrypt-private-key'},
                'solvers': [{'http01': {'ingress': {'class': 'nginx'}}}],
            }
        },
    }


#
# Readiness checks
#

def load_balancer_hostname(ingress_name: str, namespace: str) -> str:
    ingress = get_resource('ingress', ingress_name, namespace) or {}
    entries = ingress.get('status', {}).get('loadBalancer', {}).get('ingress') or [{}]
    return entries[0].get('hostname', '')


def wait_for_load_balancer(ingress_name: str, namespace: str, poll: PollConfig,
                           sleep: Callable[[float], None] = time.sleep) -> str:
    """
    Waits for the ALB created for the Ingress to publish its DNS name

    :return str: Load balancer hostname
    """
    echo('Retrieving Load Balancer DNS name...')
    hostname = wait_until(lambda: load_balancer_hostname(ingress_name, namespace), poll,
                          'Load Balancer DNS', sleep=sleep)
    echo('Load Balancer DNS: %s', hostname)
    return hostname


def pod_states(namespace: str) -> dict:
    """
    Maps pod name to the STATUS column of `kubectl get pods`
    """
    output = command_output([KUBECTL, 'get', 'pods', '-n', namespace, '--no-headers'])
    states = {}
    for line in output.splitlines():
        columns = line.split()
        if len(columns) >= 3:
            states[columns[0]] = columns[2]
    return states


def pods_ready(namespace: str) -> bool:
    states = pod_states(namespace)
    if not states:
        log.info('No pods found in namespace %s yet', namespace)
        return False
    not_ready = {pod: state for pod, state in states.items() if state not in READY_POD_STATES}
    for pod, state in not_ready.items():
        log.info('[Pod Check] Waiting for pod %s (%s)', pod, state)
    return not not_ready


def wait_for_pods(namespace: str, poll: PollConfig, sleep: Callable[[float], None] = time.sleep):
    echo('Waiting for OpenGovernance pods to become ready...')
    wait_until(lambda: pods_ready(namespace), poll, 'OpenGovernance pods', sleep=sleep)
    log.info('All pods in %s are ready.', namespace)


def cluster_issuer_ready(name: str = CLUSTER_ISSUER_NAME) -> bool:
    issuer = get_resource('clusterissuer', name) or {}
    for condition in issuer.get('status', {}).get('conditions', []):
        if condition.get('type') == 'Ready':
            return condition.get('status') == 'True'
    return False


def wait_for_cluster_issuer(poll: PollConfig, name: str = CLUSTER_ISSUER_NAME,
                            sleep: Callable[[float], None] = time.sleep):
    log.info("Waiting for ClusterIssuer '%s' to become ready...", name)
    wait_until(lambda: cluster_issuer_ready(name), poll, f"ClusterIssuer '{name}'", sleep=sleep)
    log.info("ClusterIssuer '%s' is ready.", name)


def ingress_external_ip(namespace: str, service: str = INGRESS_CONTROLLER_SERVICE) -> str:
    svc = get_resource('svc', service, namespace) or {}
    entries = svc.get('status', {}).get('loadBalancer', {}).get('ingress') or [{}]
    return entries[0].get('ip', '')


def wait_for_ingress_ip(namespace: str, poll: PollConfig, sleep: Callable[[float], None] = time.sleep) -> str:
    echo('Waiting for Ingress Controller to obtain an external IP... (Expected time: 2-5 minutes)')
    ip = wait_until(lambda: ingress_external_ip(namespace), poll, 'Ingress Controller external IP', sleep=sleep)
    log.info('Ingress Controller external IP obtained: %s', ip)
    return ip


def ingress_details(ingress_name: str, namespace: str) -> dict:
    """
    Reads the hostname, certificate, load balancer and listen ports back from a deployed ALB Ingress
    """
    ingress = get_resource('ingress', ingress_name, namespace)
    if not ingress:
        raise InstallerError(f"Ingress '{ingress_name}' was not found in namespace '{namespace}'.")
    rules = ingress.get('spec', {}).get('rules') or [{}]
    annotations = ingress.get('metadata', {}).get('annotations', {})
    entries = ingress.get('status', {}).get('loadBalancer', {}).get('ingress') or [{}]
    details = {
        'domain': rules[0].get('host', ''),
        'certificate_arn': annotations.get(CERTIFICATE_ARN_ANNOTATION, ''),
        'lb_dns': entries[0].get('hostname', ''),
        'listen_ports': annotations.get(LISTEN_PORTS_ANNOTATION, ''),
    }
    log.debug('Ingress details: %s', details)
    if not details['domain']:
        raise InstallerError('Unable to retrieve DOMAIN from Ingress rules.')
    return details


def protocol_from_listen_ports(listen_ports: str) -> str:
    return 'https' if '"HTTPS"' in (listen_ports or '') else 'http'


def restart_pods(namespace: str):
    echo('Restarting relevant Kubernetes pods to apply changes...')
    for selector in RESTART_SELECTORS:
        run_process([KUBECTL, 'delete', 'pods', '-l', selector, '-n', namespace])
    log.info('Pods are restarting...')


def start_port_forward(namespace: str, log_path: Optional[str] = None,
                       settle: float = PORT_FORWARD_SETTLE_SECONDS, sleep: Callable[[float], None] = time.sleep):
    """
    Starts `kubectl port-forward` in the background and leaves it running

    :return subprocess.Popen: The process when it is still alive after `settle` seconds, otherwise None
    """
    log.info('Setting up port-forwarding to access OpenGovernance locally.')
    args = [KUBECTL, 'port-forward', '-n', namespace, f'service/{APP_SERVICE}', f'{LOCAL_PORT}:{APP_SERVICE_PORT}']
    output = open(log_path, 'a') if log_path else subprocess.DEVNULL
    try:
        proc = subprocess.Popen(args, stdout=output, stderr=subprocess.STDOUT)
    except OSError as e:
        log.error('Could not start port-forwarding: %s', e)
        return None
    finally:
        if log_path:
            output.close()
    sleep(settle)
    if proc.poll() is None:
        log.info('Port-forwarding established successfully (PID: %s).', proc.pid)
        return proc
    log.info('Port-forwarding exited with code %s', proc.returncode)
    return None


def cname_target(domain: str, dns_server: str = DNS_SERVER) -> str:
    return command_output(['dig', '+short', 'CNAME', domain, f'@{dns_server}']).rstrip('.')


def cname_resolves_to(domain: str, target: str) -> bool:
    resolved = cname_target(domain)
    if resolved == target.rstrip('.'):
        log.info('CNAME record successfully propagated.')
        return True
    log.info('CNAME record not propagated yet (%s -> %s).', domain, resolved or 'nothing')
    return False


def wait_for_dns(domain: str, target: str, poll: PollConfig, sleep: Callable[[float], None] = time.sleep):
    echo('Verifying DNS propagation for CNAME record...')
    wait_until(lambda: cname_resolves_to(domain, target), poll, f'DNS propagation for {domain}', sleep=sleep)


def ready_node_count() -> int:
    output = command_output([KUBECTL, 'get', 'nodes', '--no-headers'])
    return sum(1 for line in output.splitlines() if len(line.split()) > 1 and line.split()[1] == 'Ready')


def wait_for_nodes(count: int, poll: PollConfig, sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Waits until at least `count` nodes report Ready

    :return int: Ready node count
    """
    def _enough():
        ready_nodes = ready_node_count()
        return ready_nodes if ready_nodes >= count else 0

    ready = wait_until(_enough, poll, f'{count} ready nodes', sleep=sleep)
    log.info('Required nodes are ready. (%s nodes)', ready)
    return ready


def ensure_namespace(namespace: str):
    if resource_exists('namespace', namespace):
        return
    run_process([KUBECTL, 'create', 'namespace', namespace])
    log.info('Created namespace %s.', namespace)


def remove_conflicting_cluster_role(namespace: str, name: str = 'ingress-nginx') -> bool:
    """
    Deletes a cluster-wide ingress-nginx RBAC left behind by a Helm release in another namespace

    :return bool: True when something was deleted
    """
    role = get_resource('clusterrole', name)
    if role is None:
        return False
    annotations = role.get('metadata', {}).get('annotations') or {}
    if annotations.get('meta.helm.sh/release-namespace') == namespace:
        return False
    log.info("Deleting conflicting ClusterRole '%s'.", name)
    run_process([KUBECTL, 'delete', 'clusterrole', name])
    run_process([KUBECTL, 'delete', 'clusterrolebinding', name], check=False)
    return True


#
# Cluster discovery
#

def _json_output(args: List[str]) -> dict:
    output = command_output(args)
    if not output:
        return {}
    try:
        return json.loads(output)
    except ValueError:
        log.debug("Could not parse the output of '%s' as JSON", ' '.join(args))
        return {}


def node_count() -> int:
    return len([line for line in command_output([KUBECTL, 'get', 'nodes', '--no-headers']).splitlines() if line])


def control_plane_url() -> str:
    """
    Last word of the `kubectl cluster-info` line that names the control plane
    """
    output = ANSI_ESCAPE_RE.sub('', command_output([KUBECTL, 'cluster-info']))
    for line in output.splitlines():
        if 'control plane' in line.lower() and line.split():
            return line.split()[-1]
    return ''


def detect_provider(cluster_info: str) -> str:
    """
    Names the platform hosting a cluster

    :param cluster_info: Control plane URL, context, cluster name and server, in any order
    :return str: `Azure`, `AWS`, `GCP`, `DigitalOcean`, `Minikube`, `Kind` or `Unknown`
    """
    text = (cluster_info or '').lower()
    for provider, markers in PROVIDER_MARKERS:
        if any(marker in text for marker in markers):
            return provider
    return UNKNOWN_PROVIDER


def cluster_details() -> Optional[ClusterInfo]:
    """
    Describes the cluster the current kubectl context points at

    :return ClusterInfo: None when no context is set or the cluster does not answer
    """
    context = current_context()
    if not context:
        log.info('No Kubernetes context is currently set in kubectl.')
        return None
    if not cluster_api_available():
        log.error('Kubernetes cluster is unreachable. Please check your connection.')
        return None

    config = _json_output([KUBECTL, 'config', 'view', '-o', 'json'])
    cluster_name = next((c.get('context', {}).get('cluster', '') for c in config.get('contexts') or []
                         if c.get('name') == context), '')
    server = next((c.get('cluster', {}).get('server', '') for c in config.get('clusters') or []
                   if c.get('name') == cluster_name), '')
    control_plane = control_plane_url()
    provider = detect_provider(' '.join([control_plane, context, cluster_name, server]))
    log.info('Cluster control plane information: %s %s %s %s', control_plane, context, cluster_name, server)
    log.info('Detected %s cluster.', provider)
    return ClusterInfo(context=context, cluster_name=cluster_name, server=server, control_plane=control_plane,
                       provider=provider, node_count=node_count())


def _timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        log.debug('Unexpected timestamp format: %s', value)
        return None


def pod_timings(namespace: str) -> List[Tuple[str, Optional[datetime], Optional[datetime]]]:
    """
    Start time and the time each pod last became Ready

    :return list: (pod name, started, ready) tuples. Missing timestamps are None
    :raises InstallerError: When the pods cannot be listed
    """
    pods = _json_output([KUBECTL, 'get', 'pods', '-n', namespace, '-o', 'json'])
    if not pods:
        raise InstallerError('Unable to fetch pods or received empty JSON. Please check your kubectl configuration.')
    timings = []
    for item in pods.get('items') or []:
        status = item.get('status') or {}
        ready = next((c.get('lastTransitionTime') for c in status.get('conditions') or []
                      if c.get('type') == 'Ready'), None)
        timings.append((item.get('metadata', {}).get('name', ''), _timestamp(status.get('startTime')),
                        _timestamp(ready)))
    return timings


def pod_group(name: str) -> Optional[str]:
    for group, pattern in POD_GROUPS:
        if fnmatch.fnmatchcase(name, pattern):
            return group
    return None


def _elapsed(started: datetime, ready: datetime) -> Union[float, str]:
    seconds = (ready - started).total_seconds()
    if seconds < 0 or seconds > MAX_READY_SECONDS:
        return UNREALISTIC_TIME
    return seconds


def readiness_times(timings: Iterable[Tuple[str, Optional[datetime], Optional[datetime]]]):
    """
    Time from start to Ready, per pod and per workload group

    Grouped pods are measured together, from the earliest start to the latest Ready in the group. A pod without
    both timestamps, or one that took longer than a day, is reported with a reason instead of a duration.

    :param timings: Output of `pod_timings`
    :return tuple: ({pod: seconds or reason}, {group: (pod count, seconds or reason)})
    """
    pods: Dict[str, Union[float, str]] = {}
    spans: Dict[str, list] = {group: [0, None, None] for group, _ in POD_GROUPS}
    for name, started, ready in timings:
        if started is None or ready is None:
            pods[name] = TIMESTAMP_UNAVAILABLE
            continue
        elapsed = _elapsed(started, ready)
        group = pod_group(name)
        if group is None or isinstance(elapsed, str):
            pods[name] = elapsed
            continue
        span = spans[group]
        span[0] += 1
        span[1] = started if span[1] is None else min(span[1], started)
        span[2] = ready if span[2] is None else max(span[2], ready)

    groups = {}
    for group, (count, first, last) in spans.items():
        groups[group] = (count, _elapsed(first, last) if count else INCOMPLETE_DATA)
    return pods, groups
