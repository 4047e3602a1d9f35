"""
ACM certificate handling

Finds or requests a DNS-validated certificate for the OpenGovernance hostname, surfaces the validation CNAMEs to the
user (or writes them to Route 53 when a hosted zone is given) and waits for the certificate to be issued.
"""
import logging
import time
from datetime import datetime
from typing import Callable, List, Mapping, Optional

from .exceptions import CertificateError
from .logger import echo, echo_banner
from .models import PollConfig
from .util import wait_until

LOG = logging.getLogger(__name__)
log = LOG  # alias

ISSUED = 'ISSUED'
PENDING_VALIDATION = 'PENDING_VALIDATION'
VALIDATION_RECORD_TTL = 300


def find_certificate(acm, domain: str) -> Optional[str]:
    """
    Looks up an existing certificate for `domain`. An ISSUED certificate wins over one that is still pending

    :param acm: Boto3 ACM client
    :param domain: Fully qualified domain name
    :return str: Certificate ARN, or None when no usable certificate exists
    """
    log.info('Searching for existing ACM certificates for domain: %s', domain)
    paginator = acm.get_paginator('list_certificates')
    matches = []
    for page in paginator.paginate(CertificateStatuses=[ISSUED, PENDING_VALIDATION]):
        for summary in page['CertificateSummaryList']:
            if summary.get('DomainName') == domain:
                matches.append(summary)
    if not matches:
        log.info('No existing ACM certificate found for domain: %s', domain)
        return None
    matches.sort(key=lambda s: 0 if s.get('Status') == ISSUED else 1)
    arn = matches[0]['CertificateArn']
    log.info('Found existing Certificate ARN: %s', arn)
    return arn


def idempotency_token(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return 'deploy' + now.strftime('%Y%m%d%H%M%S')


def request_certificate(acm, domain: str, token: Optional[str] = None) -> str:
    """
    Requests a new DNS validated certificate

    :param acm: Boto3 ACM client
    :param domain: Fully qualified domain name
    :param token: Idempotency token. Generated from the current time when omitted
    :return str: The new certificate ARN
    """
    echo('Requesting a new ACM certificate for domain: %s', domain)
    arn = acm.request_certificate(
        DomainName=domain,
        ValidationMethod='DNS',
        IdempotencyToken=token or idempotency_token()
    ).get('CertificateArn')
    if not arn:
        raise CertificateError('Failed to retrieve Certificate ARN after requesting.')
    log.info('Certificate ARN: %s', arn)
    return arn


def certificate_status(acm, arn: str) -> str:
    status = acm.describe_certificate(CertificateArn=arn)['Certificate']['Status']
    log.info('Certificate Status: %s', status)
    return status


def validation_records(acm, arn: str, poll: PollConfig, sleep: Callable[[float], None] = time.sleep) -> List[Mapping]:
    """
    Fetches the DNS validation CNAMEs. ACM needs a few seconds after the request before it publishes them

    :param acm: Boto3 ACM client
    :param arn: Certificate ARN
    :param poll: How long to wait for the records to appear
    :return list: [{'Name': ..., 'Type': ..., 'Value': ...}]
    """
    log.info('Retrieving DNS validation records...')

    def _records():
        options = acm.describe_certificate(CertificateArn=arn)['Certificate'].get('DomainValidationOptions', [])
        records = [o['ResourceRecord'] for o in options if 'ResourceRecord' in o]
        if options and len(records) == len(options):
            return records
        log.info('waiting for ResourceRecord to be available')
        return None

    return wait_until(_records, poll, 'ACM validation records', sleep=sleep)


def create_validation_records(route53, hosted_zone_id: str, records: List[Mapping]):
    """
    UPSERTs the validation CNAMEs into a Route 53 hosted zone

    :param route53: Boto3 Route53 client
    :param hosted_zone_id: The zone that serves the domain
    :param records: Output of `validation_records`
    """
    changes = [{
        'Action': 'UPSERT',
        'ResourceRecordSet': {
            'Name': r['Name'],
            'Type': r.get('Type', 'CNAME'),
            'TTL': VALIDATION_RECORD_TTL,
            'ResourceRecords': [{'Value': r['Value']}]
        }
    } for r in records]
    log.info('Creating %s validation record(s) in hosted zone %s', len(changes), hosted_zone_id)
    route53.change_resource_record_sets(HostedZoneId=hosted_zone_id, ChangeBatch={'Changes': changes})


def show_validation_records(records: List[Mapping]):
    echo('')
    echo_banner('CNAME Record Creation Required')
    echo('Please create the following CNAME records in your DNS provider to validate the certificate:')
    echo('')
    for record in records:
        echo('Host/Name: %s', record['Name'].rstrip('.'))
        echo('Type: CNAME')
        echo('Value/Points to: %s', record['Value'].rstrip('.'))
        echo('TTL: %s (or default)', VALIDATION_RECORD_TTL)
        echo('')
    echo('After creating the CNAME records, please wait for DNS propagation to complete.')
    echo('You can use tools like DNS Checker (https://dnschecker.org/) to verify the propagation.')


def wait_for_issuance(acm, arn: str, poll: PollConfig, sleep: Callable[[float], None] = time.sleep) -> str:
    """
    Polls the certificate until ACM reports it ISSUED

    The certificate is checked at most `poll.max_attempts` times. Any status other than PENDING_VALIDATION or
    ISSUED ends the wait straight away.

    :param acm: Boto3 ACM client
    :param arn: Certificate ARN
    :param poll: Interval and attempt budget
    :return str: The ARN
    :raises CertificateError: On an unexpected status
    :raises PollTimeout: When the certificate is still pending after the last attempt
    """
    echo('Starting to monitor the certificate status. This may take some time...')

    def _issued():
        status = certificate_status(acm, arn)
        if status == ISSUED:
            echo('Certificate is now ISSUED.')
            return True
        if status == PENDING_VALIDATION:
            log.info('Certificate is still PENDING_VALIDATION. Waiting for %s seconds before retrying...',
                     poll.interval)
            return False
        raise CertificateError(f"Certificate status is '{status}'. Exiting.")

    wait_until(_issued, poll, 'ACM certificate issuance', sleep=sleep)
    return arn


def ensure_certificate(acm, domain: str, poll: PollConfig, record_poll: PollConfig, route53=None,
                       hosted_zone_id: Optional[str] = None, interactive: bool = True,
                       confirm: Callable[[str], object] = input, sleep: Callable[[float], None] = time.sleep) -> str:
    """
    Returns the ARN of an ISSUED certificate for `domain`, requesting and validating one when needed

    :param acm: Boto3 ACM client
    :param domain: Fully qualified domain name
    :param poll: Issuance polling budget
    :param record_poll: Validation record polling budget
    :param route53: Boto3 Route53 client, required with `hosted_zone_id`
    :param hosted_zone_id: When set the validation records are written to this zone instead of shown to the user
    :param interactive: Pause for the user to create the records
    :param confirm: Prompt function used for the pause
    :return str: Certificate ARN
    """
    arn = find_certificate(acm, domain)
    if not arn:
        arn = request_certificate(acm, domain)

    status = certificate_status(acm, arn)
    if status == ISSUED:
        echo('Existing ACM certificate is ISSUED. Proceeding to create/update Ingress.')
        return arn
    if status != PENDING_VALIDATION:
        raise CertificateError(f"Certificate status is '{status}'. Exiting.")

    echo('ACM certificate %s is PENDING_VALIDATION.', arn)
    records = validation_records(acm, arn, record_poll, sleep=sleep)
    if hosted_zone_id:
        if route53 is None:
            raise CertificateError('A Route 53 client is required to create validation records')
        create_validation_records(route53, hosted_zone_id, records)
    else:
        show_validation_records(records)
        if interactive:
            confirm('Press Enter to continue after creating the CNAME records...')
    echo('Waiting for ACM certificate to be issued...')
    return wait_for_issuance(acm, arn, poll, sleep=sleep)
