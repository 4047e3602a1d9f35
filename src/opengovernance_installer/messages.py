"""
Closing instructions shown to the user at the end of an install
"""
from typing import Dict, Iterable, Optional, Tuple, Union

from .logger import echo, echo_banner, echo_detail
from .models import DEFAULT_PASSWORD, DEFAULT_USERNAME, ClusterInfo, InstallSettings
from .util import readable_time_delta


def show_credentials():
    echo('To sign in, use the following default credentials:')
    echo_detail('Username: %s', DEFAULT_USERNAME)
    echo_detail('Password: %s', DEFAULT_PASSWORD)


def show_port_forward_instructions(namespace: str):
    echo('')
    echo_banner('Port-Forwarding Instructions')
    echo('OpenGovernance is running but not accessible via Ingress.')
    echo('You can access it using port-forwarding as follows:')
    echo('')
    echo_detail('kubectl port-forward -n %s service/nginx-proxy 8080:80', namespace)
    echo('')
    echo('Then, access it at http://localhost:8080')
    echo('')
    show_credentials()


def show_cname_instructions(domain: str, lb_dns: str, protocol: str):
    echo('')
    echo_banner('CNAME Record Creation Required')
    echo('Please create the following CNAME record in your DNS provider to map your domain to the Load Balancer:')
    echo('')
    echo('Host/Name: %s', domain)
    echo('Type: CNAME')
    echo('Value/Points to: %s', lb_dns)
    echo('TTL: 300 (or default)')
    echo('')
    echo('After creating the CNAME record, your service should be accessible at %s://%s', protocol, domain)
    echo('')


def show_a_record_instructions(domain: str, external_ip: str):
    echo('To ensure proper access to your instance, please verify or set up the following DNS A records:')
    echo('')
    echo_detail('Domain: %s', domain)
    echo_detail('Record Type: A')
    echo_detail('Value: %s', external_ip)
    echo('')
    echo('Note: It may take some time for DNS changes to propagate.')


def show_completion(settings: InstallSettings, elapsed: Optional[float] = None):
    """
    Final summary: where the application lives and how to sign in
    """
    echo('')
    echo_banner('Installation Complete')
    echo('OpenGovernance has been successfully installed and configured.')
    echo('')
    echo('Access your OpenGovernance instance at: %s', settings.url)
    echo('')
    show_credentials()
    if elapsed is not None:
        echo('')
        echo('Total elapsed time: %s', readable_time_delta(elapsed))


def show_provider_clis(clis: Iterable):
    echo('Provider Details:')
    for cli in clis:
        echo_detail('Provider: %s', cli.name)
        echo_detail('    %s', cli.detail)


def show_cluster_details(cluster: Optional[ClusterInfo]):
    if cluster is None:
        echo('kubectl is not configured or not connected to a cluster.')
        return
    echo('Kubernetes Cluster Details:')
    echo_detail('Current Context: %s', cluster.context)
    echo_detail('Cluster Name: %s', cluster.cluster_name)
    echo_detail('Provider: %s', cluster.provider)
    echo_detail('Number of Nodes: %s', cluster.node_count)


def _duration(value: Union[float, str]) -> str:
    if isinstance(value, str):
        return value
    hours, remainder = divmod(int(value), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f'{hours:02d}:{minutes:02d}:{seconds:02d}'


def show_readiness_times(pods: Dict[str, Union[float, str]], groups: Dict[str, Tuple[int, Union[float, str]]]):
    """
    Table of how long each pod, and each workload group, took to become Ready
    """
    echo('%-60s %s', 'POD_NAME', 'DURATION (HH:MM:SS)')
    for pod, value in pods.items():
        echo('%-60s %s', pod, _duration(value))
    echo('')
    echo('Grouped Workload Readiness Times:')
    for group, (count, value) in groups.items():
        echo('%-60s %s', f'{group}[{count}]', _duration(value))
    echo('-' * 40)
