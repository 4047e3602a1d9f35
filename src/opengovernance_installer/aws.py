"""
OpenGovernance on AWS EKS

Three entry points:
    - install: cluster through Terraform/OpenTofu, Helm release, then an ALB Ingress (with an ACM certificate for
      HTTPS) or a port-forward for the basic install.
    - create_ingress: certificate and ALB Ingress for an existing release. Leaves ingress_details.env behind.
    - update_app: reads ingress_details.env, waits for the certificate and switches the release to HTTPS.
"""
import functools
import logging
import os
import shutil
import time
from typing import Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from . import helm
from .certificates import ensure_certificate, wait_for_issuance
from .exceptions import InstallerError, PollTimeout, ValidationError
from .infrastructure import AWS_INFRA_DIR, REGION_OUTPUT, clone_repository, configure_kubectl, deploy, output
from .kubernetes import (alb_ingress_manifest, apply_manifest, cluster_api_available, detect_and_unset_context,
                         ingress_details, protocol_from_listen_ports, restart_pods, start_port_forward,
                         wait_for_dns, wait_for_load_balancer, wait_for_pods)
from .logger import LOG_DIR, echo, echo_banner, echo_detail
from .messages import show_cname_instructions, show_completion, show_port_forward_instructions
from .models import DEFAULT_EKS_CLUSTER_NAME, IngressDetails, InstallSettings, InstallType
from .prompts import Prompt, ask, confirm, confirm_settings, resolve_install_type
from .state import load_ingress_details, save_ingress_details
from .util import check_commands, find_infra_binary
from .validation import is_valid_cluster_name, is_valid_domain, validate_domain

LOG = logging.getLogger(__name__)
log = LOG  # alias

REQUIRED_TOOLS = ('git', 'kubectl', 'aws', 'helm')
INGRESS_TOOLS = ('kubectl', 'aws')
UPDATE_TOOLS = ('kubectl', 'aws', 'helm')
DEFAULT_INSTALL_TYPE = InstallType.BASIC
REGION_QUERY_DEFAULT = 'us-east-1'


def aws_session(region: Optional[str] = None):
    return boto3.session.Session(region_name=region)


def check_authenticated(session):
    """
    Confirms the session has working credentials

    :param session: boto3 Session
    :raises InstallerError: When STS rejects the caller or no credentials are configured
    """
    try:
        identity = session.client('sts').get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        LOG.debug('STS get_caller_identity failed: %s', e)
        raise InstallerError("AWS CLI is not configured or authenticated. Please run 'aws configure' and ensure you "
                             "have the necessary permissions.")
    log.info('AWS CLI is authenticated as %s', identity.get('Arn'))
    return identity


def check_prerequisites(settings: InstallSettings, session) -> str:
    """
    Tools, credentials and the chart repository needed by a full install

    :return str: The infrastructure binary, `tofu` or `terraform`
    """
    echo('Checking for required tools...')
    check_commands(REQUIRED_TOOLS)
    binary = find_infra_binary()
    check_authenticated(session)
    helm.ensure_repo(settings.helm_repo_name, settings.helm_repo_url)
    return binary


def available_regions(session) -> List[str]:
    """
    Region names enabled for the account, as reported by EC2

    :raises InstallerError: When the regions cannot be listed
    """
    ec2 = session.client('ec2', region_name=session.region_name or REGION_QUERY_DEFAULT)
    try:
        response = ec2.describe_regions()
    except (ClientError, BotoCoreError) as e:
        LOG.debug('EC2 describe_regions failed: %s', e)
        raise InstallerError(f'Failed to list the available AWS regions: {e}')
    return sorted(region['RegionName'] for region in response.get('Regions', []))


def validate_region(session, region: str) -> str:
    if region not in available_regions(session):
        raise ValidationError(f"Invalid AWS Region: '{region}'.")
    log.info("AWS Region '%s' is valid.", region)
    return region


def modify_deployment_settings(settings: InstallSettings, prompt: Prompt = input, session=None):
    """
    Asks for a new EKS cluster name and region. A blank answer keeps the current value

    :param settings: Updated in place
    :param prompt: Function used for interactive questions
    :param session: boto3 Session used to check the region
    """
    name = ask(f'Enter new EKS Cluster Name (leave blank to keep current [{settings.cluster_name}]): ',
               lambda answer: not answer or is_valid_cluster_name(answer),
               'Invalid cluster name format. Use only lowercase letters, numbers, and hyphens.', prompt)
    if name:
        settings.cluster_name = name
        echo('EKS Cluster Name updated to: %s', name)
    else:
        echo('EKS Cluster Name remains as: %s', settings.cluster_name)

    session = session or aws_session(settings.region)
    current = settings.region or session.region_name
    if confirm('Would you like to see the list of available AWS Regions? (y/N): ', prompt):
        echo('Available AWS Regions:')
        for number, region in enumerate(available_regions(session), 1):
            echo_detail('%2d. %s', number, region)
    while True:
        region = prompt(f'Enter new AWS Region (leave blank to keep current [{current}]): ').strip()
        if not region:
            echo('AWS Region remains as: %s', current)
            return
        try:
            settings.region = validate_region(session, region)
        except ValidationError as e:
            LOG.error('%s', e)
            continue
        echo('AWS Region updated to: %s', region)
        return


def resolve_region(settings: InstallSettings, session, binary: Optional[str] = None,
                   infra_dir: Optional[str] = None) -> str:
    """
    Region from the command line or AWS_REGION, then the Terraform output, then the AWS configuration

    :raises InstallerError: When none of them has a region
    """
    region = settings.region
    if not region and binary and infra_dir and os.path.isdir(infra_dir):
        log.info('Retrieving AWS region from %s outputs...', binary)
        region = output(binary, infra_dir, REGION_OUTPUT)
    if not region:
        log.info('Retrieving AWS region from AWS CLI configuration...')
        region = session.region_name
    if not region:
        raise InstallerError('AWS region is not set in your Terraform/OpenTofu outputs or AWS CLI configuration. '
                             'Please set it with --region or the AWS_REGION environment variable.')
    echo('Using AWS Region: %s', region)
    settings.region = region
    return region


def expose(settings: InstallSettings, session, prompt: Prompt = input,
           sleep: Callable[[float], None] = time.sleep) -> IngressDetails:
    """
    Creates the ALB Ingress for the release, with an ACM certificate for HTTPS, and records the result in
    ingress_details.env

    :return IngressDetails: What was saved
    """
    certificate_arn = None
    if settings.install_type is InstallType.HTTPS:
        acm = session.client('acm', region_name=settings.region)
        route53 = session.client('route53') if settings.hosted_zone_id else None
        certificate_arn = ensure_certificate(
            acm, settings.domain, settings.cert_poll, settings.validation_record_poll,
            route53=route53, hosted_zone_id=settings.hosted_zone_id,
            interactive=not settings.silent, confirm=prompt, sleep=sleep
        )

    echo('Creating or updating Kubernetes Ingress: %s in namespace: %s', settings.ingress_name, settings.namespace)
    apply_manifest(alb_ingress_manifest(settings.ingress_name, settings.namespace, settings.domain, certificate_arn))
    lb_dns = wait_for_load_balancer(settings.ingress_name, settings.namespace, settings.lb_poll, sleep=sleep)
    show_cname_instructions(settings.domain, lb_dns, settings.protocol)

    details = IngressDetails(
        DOMAIN=settings.domain,
        CERTIFICATE_ARN=certificate_arn or '',
        LB_DNS=lb_dns,
        NAMESPACE=settings.namespace,
        INGRESS_NAME=settings.ingress_name,
        HELM_RELEASE=settings.helm_release,
        HELM_CHART=settings.helm_chart,
        REGION=settings.region,
    )
    save_ingress_details(details, settings.ingress_details_file)
    return details


def verify_dns(settings: InstallSettings, domain: str, lb_dns: str, prompt: Prompt = input,
               sleep: Callable[[float], None] = time.sleep) -> bool:
    """
    Waits for the domain to point at the load balancer. The user may skip the check once it times out

    :return bool: True when the CNAME resolved
    :raises PollTimeout: When the check times out and the user does not skip it
    """
    if shutil.which('dig') is None:
        LOG.warning("'dig' is not installed. Skipping DNS resolution check for %s.", domain)
        return False
    try:
        wait_for_dns(domain, lb_dns, settings.dns_poll, sleep=sleep)
        echo('DNS resolution successful.')
        return True
    except PollTimeout:
        LOG.error('DNS resolution for %s failed after %s attempts.', domain, settings.dns_poll.max_attempts)
        if settings.silent:
            LOG.warning('Continuing without DNS verification.')
            return False
        if confirm('Do you want to skip DNS resolution check and proceed? (y/N): ', prompt):
            echo('Skipping DNS resolution check.')
            return False
        raise


def update_application(settings: InstallSettings, prompt: Prompt = input,
                       sleep: Callable[[float], None] = time.sleep) -> str:
    """
    Points the release at the hostname served by the live Ingress and restarts the pods that cache it

    :return str: The application URL
    """
    echo('')
    echo_banner('Starting Application Update Process')
    details = ingress_details(settings.ingress_name, settings.namespace)
    protocol = protocol_from_listen_ports(details['listen_ports'])
    echo('Determined Protocol: %s', protocol)
    if settings.verify_dns and details['lb_dns']:
        verify_dns(settings, details['domain'], details['lb_dns'], prompt, sleep)
    helm.upgrade(settings.helm_release, settings.helm_chart, settings.namespace,
                 helm.application_values(details['domain'], protocol))
    restart_pods(settings.namespace)
    url = f"{protocol}://{details['domain']}"
    echo('')
    echo_banner('Application Update Completed Successfully!')
    echo('Your service should now be fully operational at %s', url)
    return url


def install(settings: InstallSettings, prompt: Prompt = input, session=None,
            sleep: Callable[[float], None] = time.sleep):
    """
    Full installation on EKS

    :param settings: Run settings. Updated with the resolved installation type and region
    :param prompt: Function used for interactive questions
    :param session: boto3 Session. Built from the settings region when omitted
    :param sleep: Sleep function used by the polling loops
    """
    start = time.time()
    echo_banner('Starting OpenGovernance Deployment Script')
    session = session or aws_session(settings.region)
    settings.cluster_name = settings.cluster_name or DEFAULT_EKS_CLUSTER_NAME
    binary = check_prerequisites(settings, session)
    if settings.region:
        validate_region(session, settings.region)

    resolve_install_type(settings, DEFAULT_INSTALL_TYPE, prompt)
    confirm_settings(settings, DEFAULT_INSTALL_TYPE, prompt,
                     modify=functools.partial(modify_deployment_settings, session=session))

    infra_dir = os.path.join(settings.deploy_dir, AWS_INFRA_DIR)
    if settings.skip_infra:
        echo('Skipping infrastructure setup.')
        if not cluster_api_available():
            raise InstallerError('No reachable Kubernetes cluster. Configure kubectl or run without '
                                 '--skip-infra-setup.')
    else:
        detect_and_unset_context()
        clone_repository(settings.deploy_repo_url, settings.deploy_dir)
        deploy(binary, infra_dir, {'region': settings.region, 'cluster_name': settings.cluster_name})
        configure_kubectl(binary, infra_dir)

    if helm.release_exists(settings.helm_release, settings.namespace):
        echo("Helm release '%s' already exists in namespace '%s'. Skipping install.", settings.helm_release,
             settings.namespace)
    else:
        helm.install(settings.helm_release, settings.helm_chart, settings.namespace,
                     helm.application_values(settings.domain if settings.install_type.uses_ingress else None,
                                             settings.protocol))
    wait_for_pods(settings.namespace, settings.pods_poll, sleep=sleep)

    if settings.install_type.uses_ingress:
        resolve_region(settings, session, binary, infra_dir)
        expose(settings, session, prompt, sleep)
        update_application(settings, prompt, sleep)
    else:
        if start_port_forward(settings.namespace, os.path.join(LOG_DIR, 'port-forward.log'), sleep=sleep) is None:
            LOG.warning('Port-forwarding could not be started automatically.')
        show_port_forward_instructions(settings.namespace)

    show_completion(settings, time.time() - start)


def create_ingress(settings: InstallSettings, prompt: Prompt = input, session=None,
                   sleep: Callable[[float], None] = time.sleep) -> IngressDetails:
    """
    Certificate and HTTPS Ingress for a release that is already installed
    """
    check_commands(INGRESS_TOOLS)
    session = session or aws_session(settings.region)
    check_authenticated(session)
    if settings.domain:
        validate_domain(settings.domain)
    elif settings.silent:
        raise InstallerError('DOMAIN is required in silent mode.')
    else:
        settings.domain = ask('Enter the domain name (e.g., demo.opengovernance.io): ', is_valid_domain,
                              'Invalid domain format. Please enter a valid domain.', prompt)
    settings.install_type = InstallType.HTTPS
    resolve_region(settings, session)
    details = expose(settings, session, prompt, sleep)
    if settings.verify_dns:
        verify_dns(settings, details.DOMAIN, details.LB_DNS, prompt, sleep)
    echo("Run 'update-app' once the certificate is issued to switch the application to HTTPS.")
    return details


def update_app(settings: InstallSettings, path: Optional[str] = None, session=None,
               sleep: Callable[[float], None] = time.sleep) -> str:
    """
    Waits for the certificate recorded by create_ingress, then moves the release to HTTPS

    :param path: ingress_details.env location. Defaults to the settings value
    :return str: The application URL
    """
    check_commands(UPDATE_TOOLS)
    details = load_ingress_details(path or settings.ingress_details_file)
    settings.region = settings.region or details.REGION
    session = session or aws_session(settings.region)
    region = resolve_region(settings, session)

    acm = session.client('acm', region_name=region)
    wait_for_issuance(acm, details.CERTIFICATE_ARN, settings.cert_poll, sleep=sleep)

    helm.upgrade(details.HELM_RELEASE, details.HELM_CHART, details.NAMESPACE,
                 helm.application_values(details.DOMAIN, 'https'))
    restart_pods(details.NAMESPACE)
    url = f'https://{details.DOMAIN}'
    echo('')
    echo_banner('Application Update Completed Successfully!')
    echo('Your service should now be fully operational at %s', url)
    return url
