"""
Reads and writes ``ingress_details.env``, the key=value file the ingress step leaves behind for the update step

The file must stay sourceable by a POSIX shell, so every value is written inside double quotes with the characters
that are special there (backslash, double quote, dollar and backtick) escaped.
"""
import logging
import os
from dataclasses import asdict, fields

from .exceptions import InstallerError
from .models import IngressDetails

LOG = logging.getLogger(__name__)

_SPECIAL = ('\\', '"', '$', '`')
_LINE_BREAKS = ('\n', '\r')


def _quote(value: str) -> str:
    for ch in _SPECIAL:
        value = value.replace(ch, '\\' + ch)
    return f'"{value}"'


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1]
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
        out = []
        chars = iter(value)
        for ch in chars:
            if ch == '\\':
                nxt = next(chars, '')
                if nxt in _SPECIAL:
                    out.append(nxt)
                else:
                    out.append(ch + nxt)
            else:
                out.append(ch)
        return ''.join(out)
    return value


def _parse_env_lines(text: str) -> dict:
    data = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        key = key.strip()
        if key.startswith('export '):
            key = key[len('export '):].strip()
        if key:
            data[key] = _unquote(value)
    return data


def save_ingress_details(details: IngressDetails, path: str) -> str:
    """
    Persists the ingress details for a later run

    :param details: Values to save
    :param path: Destination file
    :return str: The path written
    """
    LOG.info("Saving Certificate ARN and Load Balancer DNS to '%s'...", path)
    lines = []
    for key, value in asdict(details).items():
        if value is None:
            continue
        if any(ch in str(value) for ch in _LINE_BREAKS):
            raise InstallerError(f"'{key}' contains a line break and cannot be saved to {path}")
        lines.append(f'{key}={_quote(str(value))}')
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    with open(path, 'w') as f:
        f.write('\n'.join(lines) + '\n')
    LOG.info("Details saved to '%s'.", path)
    return path


def load_ingress_details(path: str) -> IngressDetails:
    """
    Loads the values written by `save_ingress_details`

    :param path: The env file
    :return IngressDetails:
    """
    if not os.path.isfile(path):
        raise InstallerError(f"'{os.path.basename(path)}' file not found. Please run 'create-ingress' first.")
    with open(path, 'r') as f:
        data = _parse_env_lines(f.read())
    LOG.debug('Loaded ingress details: %s', data)

    kwargs = {}
    for f in fields(IngressDetails):
        if f.name in data:
            kwargs[f.name] = data[f.name]
    for required in ('DOMAIN', 'CERTIFICATE_ARN', 'LB_DNS'):
        if not kwargs.get(required):
            raise InstallerError(f"'{required}' is missing from {path}")
    return IngressDetails(**kwargs)
