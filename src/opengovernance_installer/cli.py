"""
Command line entry point

    opengovernance-install aws [create-ingress | update-app] [options]
    opengovernance-install digitalocean [options]
    opengovernance-install kind [options]
    opengovernance-install existing [options]
    opengovernance-install pod-times [--namespace NAMESPACE]
"""
import argparse
import logging
import os
import subprocess
import sys

from . import __version__, aws, digitalocean, existing, kind, kubernetes
from .exceptions import InstallerError
from .logger import DEFAULT_LOG_FILE, LogUtil
from .messages import show_readiness_times
from .models import TRUTHY, InstallSettings, Provider
from .validation import parse_install_type

LOG = logging.getLogger(__name__)
log = LOG  # alias

HELM_DEBUG_LOG = 'helm_debug.log'
EXISTING_COMMAND = 'existing'
POD_TIMES_COMMAND = 'pod-times'
PROVIDERS = tuple(provider.value for provider in Provider)


def _add_common_arguments(parser, suppress=False):
    # Sub-action parsers must not overwrite values given before the action name
    default = argparse.SUPPRESS if suppress else None
    parser.add_argument('-d', '--domain', default=default, help='Domain for OpenGovernance (overrides DOMAIN)')
    parser.add_argument('-e', '--email', default=default, help="Email for Let's Encrypt (overrides EMAIL)")
    parser.add_argument('-t', '--type', default=default, choices=['1', '2', '3'],
                        help='Installation type: 1 HTTPS with hostname, 2 HTTP with hostname, 3 basic')
    parser.add_argument('-r', '--region', default=default, help='Cloud region')
    parser.add_argument('--cluster-name', default=default, help='Kubernetes cluster name')
    parser.add_argument('--namespace', default=default, help='Namespace for the OpenGovernance release')
    parser.add_argument('--silent-install', action='store_true', default=default or False,
                        help='Never prompt. Missing required values are an error')
    parser.add_argument('--skip-infra-setup', action='store_true', default=default or False,
                        help='Use the cluster kubectl points at instead of creating one')
    parser.add_argument('--debug', action='store_true', default=default or False,
                        help='Echo every log message to the console (same as DEBUG_MODE=true)')
    parser.add_argument('--log-file', default=argparse.SUPPRESS if suppress else DEFAULT_LOG_FILE,
                        help='Install log location')


def _add_aws_arguments(parser, suppress=False):
    default = argparse.SUPPRESS if suppress else None
    parser.add_argument('--hosted-zone-id', default=default,
                        help='Route 53 hosted zone. When set the certificate validation records are created there')
    parser.add_argument('--verify-dns', action='store_true', default=default or False,
                        help='Wait for the domain to resolve to the load balancer')
    parser.add_argument('--ingress-details-file', default=default, help='Location of ingress_details.env')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='opengovernance-install', description='Install OpenGovernance')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    providers = parser.add_subparsers(dest='command', metavar='command')

    aws_parser = providers.add_parser(Provider.AWS.value, help='Amazon EKS')
    _add_common_arguments(aws_parser)
    _add_aws_arguments(aws_parser)
    actions = aws_parser.add_subparsers(dest='action', metavar='action')
    for name, help_text in (('create-ingress', 'Create the ACM certificate and HTTPS Ingress'),
                            ('update-app', 'Switch the release to HTTPS once the certificate is issued')):
        action = actions.add_parser(name, help=help_text)
        _add_common_arguments(action, suppress=True)
        _add_aws_arguments(action, suppress=True)

    do_parser = providers.add_parser(Provider.DIGITALOCEAN.value, help='DigitalOcean Kubernetes')
    _add_common_arguments(do_parser)

    kind_parser = providers.add_parser(Provider.KIND.value, help='Local Kind cluster')
    _add_common_arguments(kind_parser)

    existing_parser = providers.add_parser(EXISTING_COMMAND, 
                                          help='Detect the current cluster and install into it, or create a new one')
    _add_common_arguments(existing_parser)
    _add_aws_arguments(existing_parser)

    times_parser = providers.add_parser(POD_TIMES_COMMAND, 
                                       help='Show how long the OpenGovernance pods took to become ready')
    times_parser.add_argument('--namespace', default=None, help='Namespace of the OpenGovernance release')
    times_parser.add_argument('--debug', action='store_true', default=False,
                              help='Echo every log message to the console (same as DEBUG_MODE=true)')
    times_parser.add_argument('--log-file', default=DEFAULT_LOG_FILE, help='Install log location')
    return parser


def build_settings(args, environ=None) -> InstallSettings:
    """
    Merges the command line over the environment. Flags that were not given leave the environment value in place
    """
    def option(name):
        return getattr(args, name, None)

    install_type = parse_install_type(option('type')) if option('type') else None
    return InstallSettings.from_env(
        environ,
        provider=Provider(args.command) if args.command in PROVIDERS else None,
        domain=option('domain'),
        email=option('email'),
        install_type=install_type,
        region=option('region'),
        cluster_name=option('cluster_name'),
        namespace=option('namespace'),
        hosted_zone_id=option('hosted_zone_id'),
        ingress_details_file=option('ingress_details_file'),
        silent=option('silent_install') or None,
        skip_infra=option('skip_infra_setup') or None,
        debug=option('debug') or None,
        verify_dns=option('verify_dns') or None,
    )


def dispatch(args, settings: InstallSettings, prompt=input):
    if args.command == EXISTING_COMMAND:
        return existing.install(settings, prompt)
    if args.command == POD_TIMES_COMMAND:
        return show_readiness_times(*kubernetes.readiness_times(kubernetes.pod_timings(settings.namespace)))
    if settings.provider is Provider.AWS:
        action = getattr(args, 'action', None)
        if action == 'create-ingress':
            return aws.create_ingress(settings, prompt)
        if action == 'update-app':
            return aws.update_app(settings)
        return aws.install(settings, prompt)
    if settings.provider is Provider.DIGITALOCEAN:
        return digitalocean.install(settings, prompt)
    return kind.install(settings)


def main(argv=None, prompt=input, environ=None) -> int:
    """
    Runs the installer

    :param argv: Arguments without the program name. Defaults to sys.argv[1:]
    :param prompt: Function used for interactive questions
    :param environ: Environment mapping. Defaults to os.environ
    :return int: 0 on success, 1 on failure, 130 when interrupted
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    environ = os.environ if environ is None else environ
    debug = args.debug or environ.get('DEBUG_MODE', 'false').strip().lower() in TRUTHY
    LogUtil.set_log_handler(args.log_file, debug=debug)
    LogUtil.set_helm_log_handler(os.path.join(os.path.dirname(os.path.abspath(args.log_file)), HELM_DEBUG_LOG))
    log.debug('Passed arguments: %s', vars(args))

    try:
        settings = build_settings(args, environ)
        dispatch(args, settings, prompt)
    except KeyboardInterrupt:
        log.error('Installation interrupted.')
        return 130
    except (InstallerError, subprocess.CalledProcessError) as e:
        log.error('%s', e)
        log.info('See %s for details.', args.log_file)
        return 1
    return 0


def run():
    sys.exit(main())
