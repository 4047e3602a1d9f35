"""
Input validation for values supplied on the command line, the environment or at a prompt
"""
import logging
import re

from .exceptions import ValidationError
from .models import InstallType

LOG = logging.getLogger(__name__)

DOMAIN_RE = re.compile(r'^(([a-zA-Z0-9](-*[a-zA-Z0-9])*)\.)+[a-zA-Z]{2,}$')
EMAIL_RE = re.compile(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$')
CLUSTER_NAME_RE = re.compile(r'^[a-z0-9-]+$')


def is_valid_domain(domain) -> bool:
    return bool(domain) and DOMAIN_RE.match(domain) is not None


def is_valid_email(email) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def is_valid_cluster_name(name) -> bool:
    return bool(name) and CLUSTER_NAME_RE.match(name) is not None


def validate_domain(domain: str) -> str:
    if not is_valid_domain(domain):
        raise ValidationError(f"Invalid domain: '{domain}'. Please enter a valid domain.")
    LOG.info("Domain '%s' is valid.", domain)
    return domain


def validate_email(email: str) -> str:
    if not is_valid_email(email):
        raise ValidationError(f"Invalid email: '{email}'. Please enter a valid email address.")
    LOG.info("Email '%s' is valid.", email)
    return email


def validate_cluster_name(name: str) -> str:
    if not is_valid_cluster_name(name):
        raise ValidationError("Invalid cluster name format. Use only lowercase letters, numbers, and hyphens.")
    return name


def parse_install_type(value) -> InstallType:
    """
    Converts `1`, `2`, `3` (as int or str) into an InstallType
    """
    if isinstance(value, InstallType):
        return value
    try:
        return InstallType(int(str(value).strip()))
    except ValueError:
        raise ValidationError(f"Invalid installation type: {value}")
