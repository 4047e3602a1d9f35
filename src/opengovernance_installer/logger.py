"""
Logging setup for the installer

Every module logs through ``logging.getLogger(__name__)``. Records always go to the install log file; the console
only shows records flagged with ``extra={'console': True}``, warnings and errors. In debug mode every INFO record is
echoed to the console as well.
"""
import logging
import os

LOGGER_NAME = 'opengovernance_installer'
LOG_DIR = os.path.join(os.path.expanduser('~'), '.opengovernance')
DEFAULT_LOG_FILE = os.path.join(LOG_DIR, 'install.log')
DEFAULT_DEBUG_LOG_FILE = os.path.join(LOG_DIR, 'helm_debug.log')
FILE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
DETAIL_INDENT = '    '

log = logging.getLogger(LOGGER_NAME)


class ConsoleFilter(logging.Filter):
    """
    Lets user-facing records through to the console handler
    """

    def __init__(self, debug=False):
        super().__init__()
        self.debug = debug

    def filter(self, record):
        if record.levelno >= logging.WARNING or getattr(record, 'console', False):
            return True
        return self.debug and record.levelno >= logging.INFO


class ConsoleFormatter(logging.Formatter):
    def format(self, record):
        message = record.getMessage()
        if record.levelno >= logging.ERROR:
            return f'Error: {message}'
        if record.levelno == logging.WARNING:
            return f'Warning: {message}'
        if getattr(record, 'console', False):
            return message
        return f'[DEBUG] {message}'


class LogUtil(object):
    """
    Class to configure the package logger once per run.
    Methods:
        - set_log_handler: Attaches the file and console handlers.
        - set_helm_log_handler: Attaches the Helm debug log handler.
        - get_root_logger: Returns the package logger.
    """
    @classmethod
    def get_root_logger(cls):
        return log

    @classmethod
    def set_log_handler(cls, log_file=DEFAULT_LOG_FILE, debug=False, stream=None):
        """
        Configures the package logger

        :param log_file: Path to the install log. Parent directories are created
        :param debug: When True every INFO record is echoed to the console
        :param stream: Console stream. Defaults to stderr
        :return logging.Logger: The package logger
        """
        cls.reset()
        log.setLevel(logging.DEBUG)
        log.propagate = False

        if log_file:
            os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
            log.addHandler(file_handler)

        console_handler = logging.StreamHandler(stream)
        console_handler.addFilter(ConsoleFilter(debug))
        console_handler.setFormatter(ConsoleFormatter())
        log.addHandler(console_handler)
        log.debug('Logging configured. Log file: %s, debug: %s', log_file, debug)
        return log

    @classmethod
    def set_helm_log_handler(cls, debug_log_file=DEFAULT_DEBUG_LOG_FILE):
        """
        Sends Helm command output to its own debug log in addition to the install log
        """
        os.makedirs(os.path.dirname(os.path.abspath(debug_log_file)), exist_ok=True)
        helm_log = logging.getLogger(f'{LOGGER_NAME}.helm')
        handler = logging.FileHandler(debug_log_file)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
        helm_log.addHandler(handler)
        return helm_log

    @classmethod
    def reset(cls):
        for logger in (log, logging.getLogger(f'{LOGGER_NAME}.helm')):
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
        log.propagate = True


def echo(message, *args):
    """
    Shows a message on the console and records it in the install log
    """
    log.info(message, *args, extra={'console': True})


def echo_detail(message, *args):
    log.info(DETAIL_INDENT + message, *args, extra={'console': True})


def echo_banner(title):
    echo('=' * 39)
    echo(title)
    echo('=' * 39)
