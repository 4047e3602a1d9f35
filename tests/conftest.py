import subprocess

import boto3
import pytest

from opengovernance_installer import digitalocean, helm, infrastructure, kind, kubernetes, util
from opengovernance_installer.logger import LogUtil
from opengovernance_installer.models import InstallSettings, PollConfig


class FakeRunner(object):
    """
    Stands in for run_process. Responses are keyed by a prefix of the command; the longest matching prefix wins.
    A list of responses is consumed one call at a time and its last entry repeats.
    """

    def __init__(self):
        self.calls = []
        self.responses = {}

    def add(self, prefix, returncode=0, stdout='', stderr=''):
        self.responses[tuple(prefix)] = (returncode, stdout, stderr)

    def add_sequence(self, prefix, responses):
        self.responses[tuple(prefix)] = list(responses)

    def _response(self, args):
        matches = [k for k in self.responses if tuple(args[:len(k)]) == k]
        if not matches:
            return 0, '', ''
        key = max(matches, key=len)
        response = self.responses[key]
        if isinstance(response, list):
            return response.pop(0) if len(response) > 1 else response[0]
        return response

    def __call__(self, args, input=None, env=None, cwd=None, check=True, logger=None):
        args = list(args)
        self.calls.append({'args': args, 'input': input, 'cwd': cwd})
        returncode, stdout, stderr = self._response(args)
        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, args, output=stdout, stderr=stderr)
        return subprocess.CompletedProcess(args, returncode, stdout, stderr)

    def commands(self, *prefix):
        return [c for c in self.calls if tuple(c['args'][:len(prefix)]) == prefix]


@pytest.fixture
def runner(monkeypatch):
    fake = FakeRunner()
    for module in (util, kubernetes, helm, infrastructure, digitalocean, kind):
        monkeypatch.setattr(module, 'run_process', fake)
    return fake


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def all_tools(monkeypatch):
    monkeypatch.setattr(util.shutil, 'which', lambda cmd: f'/usr/local/bin/{cmd}')


@pytest.fixture
def settings(tmp_path):
    fast = PollConfig(0, 3)
    return InstallSettings.from_env(
        {},
        domain='demo.opengovernance.io',
        region='us-east-1',
        silent=True,
        ingress_details_file=str(tmp_path / 'ingress_details.env'),
        cert_poll=fast, validation_record_poll=fast, lb_poll=fast, pods_poll=fast,
        issuer_poll=fast, ingress_ip_poll=fast, dns_poll=fast, nodes_poll=fast,
    )


@pytest.fixture
def boto_session():
    return boto3.session.Session(region_name='us-east-1', aws_access_key_id='testing',
                                 aws_secret_access_key='testing')


class FakeSession(object):
    def __init__(self, region_name='us-east-1', **clients):
        self.region_name = region_name
        self.clients = clients

    def client(self, name, region_name=None):
        return self.clients[name]


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    LogUtil.reset()
