"""
Settings and records passed between the installer steps
"""
import enum
import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_NAMESPACE = "opengovernance"
DEFAULT_CLUSTER_NAME = "opengovernance"
DEFAULT_EKS_CLUSTER_NAME = "opengovernance-cluster"
DEFAULT_DO_REGION = "nyc3"
DEFAULT_HELM_RELEASE = "opengovernance"
DEFAULT_HELM_REPO_NAME = "opengovernance"
DEFAULT_HELM_CHART = "opengovernance/opengovernance"
DEFAULT_HELM_REPO_URL = "https://opengovern.github.io/charts"
DEFAULT_INGRESS_NAME = "opengovernance-ingress"
DEFAULT_DEPLOY_REPO_URL = "https://github.com/opengovern/deploy-opengovernance.git"
DEFAULT_DEPLOY_DIR = os.path.join(os.path.expanduser('~'), '.opengovernance', 'deploy-terraform')
DEFAULT_INGRESS_DETAILS_FILE = "ingress_details.env"
DEFAULT_USERNAME = "admin@opengovernance.io"
DEFAULT_PASSWORD = "password"

TRUTHY = ('1', 'true', 'yes', 'y')


class Provider(str, enum.Enum):
    AWS = 'aws'
    DIGITALOCEAN = 'digitalocean'
    KIND = 'kind'


class InstallType(enum.IntEnum):
    HTTPS = 1
    HTTP = 2
    BASIC = 3

    @property
    def description(self) -> str:
        return {
            InstallType.HTTPS: "Install with HTTPS and Hostname (DNS records required after installation)",
            InstallType.HTTP: "Install with HTTP and Hostname (DNS records required after installation)",
            InstallType.BASIC: "Basic Install (No Ingress, use port-forwarding)",
        }[self]

    @property
    def uses_ingress(self) -> bool:
        return self is not InstallType.BASIC

    @property
    def protocol(self) -> str:
        return 'https' if self is InstallType.HTTPS else 'http'


@dataclass(frozen=True)
class PollConfig:
    interval: float
    max_attempts: int


@dataclass
class InstallSettings:
    provider: Provider = Provider.AWS
    domain: Optional[str] = None
    email: Optional[str] = None
    install_type: Optional[InstallType] = None
    region: Optional[str] = None
    cluster_name: Optional[str] = None
    namespace: str = DEFAULT_NAMESPACE
    helm_release: str = DEFAULT_HELM_RELEASE
    helm_chart: str = DEFAULT_HELM_CHART
    helm_repo_name: str = DEFAULT_HELM_REPO_NAME
    helm_repo_url: str = DEFAULT_HELM_REPO_URL
    ingress_name: str = DEFAULT_INGRESS_NAME
    deploy_repo_url: str = DEFAULT_DEPLOY_REPO_URL
    deploy_dir: str = DEFAULT_DEPLOY_DIR
    ingress_details_file: str = DEFAULT_INGRESS_DETAILS_FILE
    hosted_zone_id: Optional[str] = None
    silent: bool = False
    skip_infra: bool = False
    debug: bool = False
    verify_dns: bool = False

    cert_poll: PollConfig = field(default_factory=lambda: PollConfig(60, 60))
    validation_record_poll: PollConfig = field(default_factory=lambda: PollConfig(15, 10))
    lb_poll: PollConfig = field(default_factory=lambda: PollConfig(20, 6))
    pods_poll: PollConfig = field(default_factory=lambda: PollConfig(30, 24))
    issuer_poll: PollConfig = field(default_factory=lambda: PollConfig(30, 10))
    ingress_ip_poll: PollConfig = field(default_factory=lambda: PollConfig(30, 12))
    dns_poll: PollConfig = field(default_factory=lambda: PollConfig(30, 12))
    nodes_poll: PollConfig = field(default_factory=lambda: PollConfig(30, 10))

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "InstallSettings":
        """
        Builds settings from the environment. Keyword overrides that are not None win over the environment

        Reads DOMAIN, EMAIL, AWS_REGION and DEBUG_MODE
        """
        environ = os.environ if environ is None else environ
        settings = cls(
            domain=environ.get('DOMAIN') or None,
            email=environ.get('EMAIL') or None,
            region=environ.get('AWS_REGION') or None,
            debug=environ.get('DEBUG_MODE', 'false').strip().lower() in TRUTHY,
        )
        for key, value in overrides.items():
            if not hasattr(settings, key):
                raise AttributeError(f'Unknown setting: {key}')
            if value is not None:
                setattr(settings, key, value)
        return settings

    @property
    def protocol(self) -> str:
        return self.install_type.protocol if self.install_type else 'http'

    @property
    def url(self) -> str:
        if self.install_type and self.install_type.uses_ingress and self.domain:
            return f'{self.protocol}://{self.domain}'
        return 'http://localhost:8080'


@dataclass
class IngressDetails:
    DOMAIN: str
    CERTIFICATE_ARN: str
    LB_DNS: str
    NAMESPACE: str = DEFAULT_NAMESPACE
    INGRESS_NAME: str = DEFAULT_INGRESS_NAME
    HELM_RELEASE: str = DEFAULT_HELM_RELEASE
    HELM_CHART: str = DEFAULT_HELM_CHART
    REGION: Optional[str] = None


@dataclass
class ClusterInfo:
    context: str
    cluster_name: str = ''
    server: str = ''
    control_plane: str = ''
    provider: str = 'Unknown'
    node_count: int = 0
