from datetime import datetime

import pytest
from botocore.stub import ANY, Stubber

from opengovernance_installer.certificates import (create_validation_records, ensure_certificate, find_certificate,
                                                   idempotency_token, request_certificate, validation_records,
                                                   wait_for_issuance)
from opengovernance_installer.exceptions import CertificateError, PollTimeout
from opengovernance_installer.models import PollConfig

DOMAIN = 'demo.opengovernance.io'
ARN = 'arn:aws:acm:us-east-1:123456789012:certificate/0f1e2d3c-aaaa-bbbb-cccc-1234567890ab'
OTHER_ARN = 'arn:aws:acm:us-east-1:123456789012:certificate/99999999-aaaa-bbbb-cccc-1234567890ab'
RECORD = {'Name': '_abc.demo.opengovernance.io.', 'Type': 'CNAME', 'Value': '_def.acm-validations.aws.'}


@pytest.fixture
def acm(boto_session):
    client = boto_session.client('acm')
    with Stubber(client) as stubber:
        client.stubber = stubber
        yield client
        stubber.assert_no_pending_responses()


def _status(acm, status, arn=ARN):
    acm.stubber.add_response('describe_certificate', {'Certificate': {'CertificateArn': arn, 'Status': status}},
                             {'CertificateArn': arn})


def test_find_certificate_prefers_issued(acm):
    acm.stubber.add_response('list_certificates', {'CertificateSummaryList': [
        {'CertificateArn': OTHER_ARN, 'DomainName': DOMAIN, 'Status': 'PENDING_VALIDATION'},
        {'CertificateArn': 'arn:aws:acm:us-east-1:123456789012:certificate/x', 'DomainName': 'other.io'},
        {'CertificateArn': ARN, 'DomainName': DOMAIN, 'Status': 'ISSUED'},
    ]}, {'CertificateStatuses': ['ISSUED', 'PENDING_VALIDATION']})
    assert find_certificate(acm, DOMAIN) == ARN


def test_find_certificate_none(acm):
    acm.stubber.add_response('list_certificates', {'CertificateSummaryList': []})
    assert find_certificate(acm, DOMAIN) is None


def test_idempotency_token():
    assert idempotency_token(datetime(2024, 11, 5, 9, 8, 7)) == 'deploy20241105090807'


def test_request_certificate(acm):
    acm.stubber.add_response('request_certificate', {'CertificateArn': ARN}, {
        'DomainName': DOMAIN, 'ValidationMethod': 'DNS', 'IdempotencyToken': 'deploy20240101000000'})
    assert request_certificate(acm, DOMAIN, token='deploy20240101000000') == ARN


def test_wait_for_issuance_pending_then_issued(acm, sleeps, fake_sleep):
    _status(acm, 'PENDING_VALIDATION')
    _status(acm, 'ISSUED')
    assert wait_for_issuance(acm, ARN, PollConfig(60, 60), sleep=fake_sleep) == ARN
    assert sleeps == [60]


def test_wait_for_issuance_times_out_after_max_attempts(acm, sleeps, fake_sleep):
    for _ in range(4):
        _status(acm, 'PENDING_VALIDATION')
    with pytest.raises(PollTimeout):
        wait_for_issuance(acm, ARN, PollConfig(60, 4), sleep=fake_sleep)
    assert sleeps == [60, 60, 60]


@pytest.mark.parametrize('status', ['FAILED', 'EXPIRED', 'VALIDATION_TIMED_OUT'])
def test_wait_for_issuance_stops_on_unexpected_status(acm, sleeps, fake_sleep, status):
    _status(acm, status)
    with pytest.raises(CertificateError, match=status):
        wait_for_issuance(acm, ARN, PollConfig(60, 60), sleep=fake_sleep)
    assert sleeps == []


def test_validation_records_waits_for_resource_record(acm, sleeps, fake_sleep):
    acm.stubber.add_response('describe_certificate', {'Certificate': {
        'CertificateArn': ARN, 'DomainValidationOptions': [{'DomainName': DOMAIN}]}})
    acm.stubber.add_response('describe_certificate', {'Certificate': {
        'CertificateArn': ARN, 'DomainValidationOptions': [{'DomainName': DOMAIN, 'ResourceRecord': RECORD}]}})
    assert validation_records(acm, ARN, PollConfig(15, 10), sleep=fake_sleep) == [RECORD]
    assert sleeps == [15]


def test_create_validation_records(boto_session):
    route53 = boto_session.client('route53')
    with Stubber(route53) as stubber:
        stubber.add_response('change_resource_record_sets', {'ChangeInfo': {
            'Id': '/change/C1', 'Status': 'PENDING', 'SubmittedAt': datetime(2024, 1, 1)}}, {
            'HostedZoneId': 'Z123',
            'ChangeBatch': {'Changes': [{'Action': 'UPSERT', 'ResourceRecordSet': {
                'Name': RECORD['Name'], 'Type': 'CNAME', 'TTL': 300,
                'ResourceRecords': [{'Value': RECORD['Value']}]}}]}
        })
        create_validation_records(route53, 'Z123', [RECORD])
        stubber.assert_no_pending_responses()


def test_ensure_certificate_existing_issued(acm):
    acm.stubber.add_response('list_certificates', {'CertificateSummaryList': [
        {'CertificateArn': ARN, 'DomainName': DOMAIN, 'Status': 'ISSUED'}]})
    _status(acm, 'ISSUED')
    assert ensure_certificate(acm, DOMAIN, PollConfig(60, 60), PollConfig(15, 10)) == ARN


def test_ensure_certificate_requests_and_waits(acm, sleeps, fake_sleep):
    prompts = []
    acm.stubber.add_response('list_certificates', {'CertificateSummaryList': []})
    acm.stubber.add_response('request_certificate', {'CertificateArn': ARN},
                             {'DomainName': DOMAIN, 'ValidationMethod': 'DNS', 'IdempotencyToken': ANY})
    _status(acm, 'PENDING_VALIDATION')
    acm.stubber.add_response('describe_certificate', {'Certificate': {
        'CertificateArn': ARN, 'DomainValidationOptions': [{'DomainName': DOMAIN, 'ResourceRecord': RECORD}]}})
    _status(acm, 'PENDING_VALIDATION')
    _status(acm, 'ISSUED')

    arn = ensure_certificate(acm, DOMAIN, PollConfig(60, 60), PollConfig(15, 10), confirm=prompts.append,
                             sleep=fake_sleep)
    assert arn == ARN
    assert len(prompts) == 1
    assert sleeps == [60]


def test_ensure_certificate_silent_does_not_prompt(acm, fake_sleep):
    acm.stubber.add_response('list_certificates', {'CertificateSummaryList': [
        {'CertificateArn': ARN, 'DomainName': DOMAIN, 'Status': 'PENDING_VALIDATION'}]})
    _status(acm, 'PENDING_VALIDATION')
    acm.stubber.add_response('describe_certificate', {'Certificate': {
        'CertificateArn': ARN, 'DomainValidationOptions': [{'DomainName': DOMAIN, 'ResourceRecord': RECORD}]}})
    _status(acm, 'ISSUED')

    def fail(question):
        raise AssertionError('prompted in silent mode')

    assert ensure_certificate(acm, DOMAIN, PollConfig(60, 60), PollConfig(15, 10), interactive=False,
                              confirm=fail, sleep=fake_sleep) == ARN


def test_ensure_certificate_hosted_zone_requires_client(acm):
    acm.stubber.add_response('list_certificates', {'CertificateSummaryList': [
        {'CertificateArn': ARN, 'DomainName': DOMAIN, 'Status': 'PENDING_VALIDATION'}]})
    _status(acm, 'PENDING_VALIDATION')
    acm.stubber.add_response('describe_certificate', {'Certificate': {
        'CertificateArn': ARN, 'DomainValidationOptions': [{'DomainName': DOMAIN, 'ResourceRecord': RECORD}]}})
    with pytest.raises(CertificateError, match='Route 53'):
        ensure_certificate(acm, DOMAIN, PollConfig(60, 60), PollConfig(15, 10), hosted_zone_id='Z123')
