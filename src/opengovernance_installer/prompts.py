"""
Interactive input: installation type selection, missing domain and email, and the settings confirmation
"""
import logging
from typing import Callable, Optional

from .exceptions import ValidationError
from .logger import echo, echo_banner
from .models import InstallSettings, InstallType, Provider
from .validation import is_valid_domain, is_valid_email, parse_install_type, validate_domain, validate_email

LOG = logging.getLogger(__name__)

Prompt = Callable[[str], str]


def ask(question: str, validator: Callable[[str], bool], error: str, prompt: Prompt = input) -> str:
    """
    Repeats `question` until `validator` accepts the answer
    """
    while True:
        answer = prompt(question).strip()
        if validator(answer):
            return answer
        LOG.error(error)


def choose_install_type(default: InstallType, prompt: Prompt = input) -> InstallType:
    echo('')
    echo('Select Installation Type:')
    for install_type in InstallType:
        echo('%s) %s', install_type.value, install_type.description)
    while True:
        answer = prompt(f'Enter the number corresponding to your choice [{default.value}]: ').strip()
        if not answer:
            return default
        try:
            return parse_install_type(answer)
        except ValidationError:
            LOG.error('Invalid choice. Please select 1, 2, or 3.')


def _needs_email(settings: InstallSettings) -> bool:
    return settings.provider is Provider.DIGITALOCEAN and settings.install_type is InstallType.HTTPS


def require_inputs(settings: InstallSettings, prompt: Prompt = input):
    """
    Makes sure the domain and email the chosen installation type needs are present and valid

    :raises ValidationError: In silent mode when a value is missing or invalid
    """
    if settings.install_type.uses_ingress:
        if settings.domain:
            validate_domain(settings.domain)
        elif settings.silent:
            raise ValidationError(
                f'DOMAIN is required for installation type {settings.install_type.value} in silent mode.')
        else:
            settings.domain = ask('Enter your domain for OpenGovernance: ', is_valid_domain,
                                  'Invalid domain format. Please enter a valid domain.', prompt)
    if _needs_email(settings):
        if settings.email:
            validate_email(settings.email)
        elif settings.silent:
            raise ValidationError('EMAIL is required for installation type 1 in silent mode.')
        else:
            settings.email = ask("Enter your email for Let's Encrypt: ", is_valid_email,
                                 'Invalid email format. Please enter a valid email address.', prompt)


def resolve_install_type(settings: InstallSettings, default: InstallType, prompt: Prompt = input) -> InstallType:
    """
    Decides the installation type

    An explicit type always wins. A known domain means HTTPS, except on DigitalOcean in silent mode without an email,
    which means HTTP with a hostname. Silent runs without a domain get the basic install. Anything else is asked.

    :param settings: Updated in place
    :param default: Answer used when the user just presses Enter
    :return InstallType:
    """
    if settings.install_type is not None:
        chosen = parse_install_type(settings.install_type)
    elif settings.domain:
        chosen = InstallType.HTTPS
        if settings.provider is Provider.DIGITALOCEAN and settings.silent and not settings.email:
            chosen = InstallType.HTTP
    elif settings.silent:
        chosen = InstallType.BASIC
    else:
        chosen = choose_install_type(default, prompt)
    settings.install_type = chosen
    LOG.info('Installation type: %s (%s)', chosen.value, chosen.description)
    require_inputs(settings, prompt)
    return chosen


def show_settings(settings: InstallSettings):
    echo('')
    echo_banner('Installation Configuration')
    echo('Installation Type: %s', settings.install_type.description)
    if settings.install_type.uses_ingress:
        echo('Domain: %s', settings.domain)
    if _needs_email(settings):
        echo('Email: %s', settings.email)
    if settings.cluster_name:
        echo('Cluster Name: %s', settings.cluster_name)
    if settings.region:
        echo('Region: %s', settings.region)
    echo('Namespace: %s', settings.namespace)
    echo('=' * 39)


def confirm_settings(settings: InstallSettings, default: InstallType, prompt: Prompt = input,
                     modify: Optional[Callable[[InstallSettings, Prompt], None]] = None):
    """
    Shows the settings and lets the user go back and pick another installation type. Silent runs are not asked

    :param modify: Called after the new installation type is chosen, for provider settings such as the region
    """
    while True:
        show_settings(settings)
        if settings.silent:
            return
        answer = prompt("Press 'y' to approve and continue, or 'n' to change the settings [y]: ")
        answer = answer.strip().lower()
        if answer in ('', 'y', 'yes'):
            return
        if answer in ('n', 'no'):
            settings.install_type = choose_install_type(default, prompt)
            require_inputs(settings, prompt)
            if modify is not None:
                modify(settings, prompt)
        else:
            LOG.error("Invalid input. Please enter 'y' or 'n'.")


def confirm(question: str, prompt: Prompt = input) -> bool:
    while True:
        answer = prompt(question).strip().lower()
        if answer in ('y', 'yes'):
            return True
        if answer in ('', 'n', 'no'):
            return False
        LOG.error("Invalid input. Please enter 'y' or 'n'.")