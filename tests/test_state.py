import shutil
import subprocess

import pytest

from opengovernance_installer.exceptions import InstallerError
from opengovernance_installer.models import IngressDetails
from opengovernance_installer.state import load_ingress_details, save_ingress_details

ARN = 'arn:aws:acm:us-west-2:123456789012:certificate/0f1e2d3c-aaaa-bbbb-cccc-1234567890ab'


def _details(**overrides):
    values = dict(DOMAIN='demo.opengovernance.io', CERTIFICATE_ARN=ARN,
                  LB_DNS='k8s-opengove-abc-123.us-west-2.elb.amazonaws.com', REGION='us-west-2')
    values.update(overrides)
    return IngressDetails(**values)


def test_save_and_load(tmp_path):
    path = str(tmp_path / 'nested' / 'ingress_details.env')
    save_ingress_details(_details(), path)
    loaded = load_ingress_details(path)
    assert loaded == _details()
    assert loaded.NAMESPACE == 'opengovernance'
    assert loaded.HELM_CHART == 'opengovernance/opengovernance'


def test_file_is_key_value_lines(tmp_path):
    path = tmp_path / 'ingress_details.env'
    save_ingress_details(_details(), str(path))
    lines = path.read_text().splitlines()
    assert 'DOMAIN="demo.opengovernance.io"' in lines
    assert f'CERTIFICATE_ARN="{ARN}"' in lines


def test_optional_region_is_skipped(tmp_path):
    path = tmp_path / 'ingress_details.env'
    save_ingress_details(_details(REGION=None), str(path))
    assert 'REGION' not in path.read_text()
    assert load_ingress_details(str(path)).REGION is None


@pytest.mark.skipif(shutil.which('sh') is None, reason='needs a POSIX shell')
def test_sourcing_with_sh_reproduces_values(tmp_path):
    tricky = 'odd"value$HOME `uname` \\ end'
    path = tmp_path / 'ingress_details.env'
    save_ingress_details(_details(LB_DNS=tricky), str(path))
    out = subprocess.run(['sh', '-c', '. "$1"; printf "%s" "$LB_DNS"', 'sh', str(path)],
                         capture_output=True, text=True, check=True).stdout
    assert out == tricky
    assert load_ingress_details(str(path)).LB_DNS == tricky


def test_missing_file(tmp_path):
    with pytest.raises(InstallerError) as excinfo:
        load_ingress_details(str(tmp_path / 'ingress_details.env'))
    assert str(excinfo.value) == "'ingress_details.env' file not found. Please run 'create-ingress' first."


def test_missing_key(tmp_path):
    path = tmp_path / 'ingress_details.env'
    path.write_text('DOMAIN="demo.opengovernance.io"\nexport LB_DNS=lb.example.com\n')
    with pytest.raises(InstallerError, match='CERTIFICATE_ARN'):
        load_ingress_details(str(path))


@pytest.mark.parametrize('arn', ['arn:aws:acm:x\ny', 'arn:aws:acm:x\r'])
def test_line_breaks_are_rejected(tmp_path, arn):
    path = tmp_path / 'ingress_details.env'
    with pytest.raises(InstallerError, match="'CERTIFICATE_ARN' contains a line break"):
        save_ingress_details(_details(CERTIFICATE_ARN=arn), str(path))
    assert not path.exists()
