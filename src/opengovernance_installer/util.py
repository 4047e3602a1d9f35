"""
Set of utility functions shared by the provider installers
"""
import logging
import shutil
import subprocess
import time
from io import StringIO
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ruamel.yaml import YAML

from .exceptions import CommandError, MissingToolError, PollTimeout
from .models import PollConfig

LOG = logging.getLogger(__name__)
log = LOG  # alias

INFRA_BINARIES = ('tofu', 'terraform')


def check_commands(commands: Iterable[str]):
    """
    Verifies each command is available on the PATH

    :param commands: Names of the required executables
    :raises MissingToolError: Naming every command that could not be found
    """
    missing = []
    for cmd in commands:
        if shutil.which(cmd) is None:
            log.error("Required command '%s' is not installed.", cmd)
            missing.append(cmd)
        else:
            log.info("Command '%s' is installed.", cmd)
    if missing:
        raise MissingToolError(missing)


def find_infra_binary() -> str:
    """
    Picks the infrastructure tool to use. OpenTofu wins when both are installed

    :return str: `tofu` or `terraform`
    """
    for binary in INFRA_BINARIES:
        if shutil.which(binary):
            log.info('%s is installed.', 'OpenTofu' if binary == 'tofu' else 'Terraform')
            return binary
    log.error('Neither OpenTofu nor Terraform is installed. Please install one of them and retry.')
    raise MissingToolError(INFRA_BINARIES)


def run_process(args: Sequence[str], input: Optional[str] = None, env: Optional[Mapping[str, str]] = None,
                cwd: Optional[str] = None, check: bool = True, logger: logging.Logger = LOG):
    """
    Run a command as a sub-process

    :param args: Command and arguments
    :param input: Text passed on stdin
    :param env: Environment for the child process. Inherits ours when None
    :param cwd: Working directory for the child process
    :param check: Raise when the command fails
    :param logger: Where to record the command output
    :return: The completed sub-process object
    :raises CommandError: When the binary cannot be started and `check` is set
    """
    logger.debug("running cmd: %s", ' '.join(args))
    try:
        proc = subprocess.run(list(args), input=input, capture_output=True, text=True, env=env, cwd=cwd)
        logger.debug('Return code: %s', proc.returncode)
        if proc.stdout:
            logger.debug('Stdout: %s', proc.stdout)
        if proc.stderr:
            logger.debug('Stderr: %s', proc.stderr)
        if check:
            proc.check_returncode()
        return proc
    except subprocess.CalledProcessError as e:
        log.debug("Error Detected on cmd %s with error %s", e.cmd, e.stderr)
        raise
    except OSError as e:
        log.error("Error Detected on cmd %s: %s", args[0], e.strerror)
        if not check:
            return subprocess.CompletedProcess(list(args), 127, '', str(e))
        raise CommandError(f"Failed to run '{args[0]}': {e.strerror or e}") from e


def command_output(args: Sequence[str], **kwargs) -> str:
    """
    Stripped stdout of a command, or an empty string when the command fails
    """
    proc = run_process(args, check=False, **kwargs)
    if proc.returncode != 0:
        return ''
    return proc.stdout.strip()


def wait_until(predicate: Callable[[], object], poll: PollConfig, description: str,
               sleep: Callable[[float], None] = time.sleep):
    """
    Polls `predicate` on a fixed interval until it returns something truthy

    The predicate is called at most `poll.max_attempts` times and there is no sleep after the final attempt.

    :param predicate: Zero-argument callable. Its first truthy result is returned
    :param poll: Interval and attempt budget
    :param description: Human readable name of what we are waiting for
    :param sleep: Sleep function, swapped out in tests
    :raises PollTimeout: When the attempt budget is exhausted
    """
    for attempt in range(1, poll.max_attempts + 1):
        result = predicate()
        if result:
            log.debug('%s succeeded on attempt %s', description, attempt)
            return result
        log.info('Waiting for %s... (%s/%s)', description, attempt, poll.max_attempts)
        if attempt < poll.max_attempts:
            sleep(poll.interval)
    raise PollTimeout(description, poll.max_attempts)


def readable_time_delta(delta: float) -> str:
    """
    Takes a delta of unix timestamps and returns a more human readable style
    :param delta:
    :return:
    """
    hours, h_rem = divmod(delta, 3600)
    minutes, seconds = divmod(h_rem, 60)
    return '{:02}:{:02}:{:02}'.format(int(hours), int(minutes), int(seconds))


def dump_yaml(document) -> str:
    """
    Renders a mapping as block-style YAML text
    """
    yaml = YAML(typ='safe', pure=True)
    yaml.default_flow_style = False
    yaml.width = 4096
    stream = StringIO()
    yaml.dump(document, stream)
    return stream.getvalue()
