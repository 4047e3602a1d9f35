"""
Errors raised by the installer. Anything derived from InstallerError ends the run with exit code 1
"""


class InstallerError(RuntimeError):
    pass


class MissingToolError(InstallerError):
    def __init__(self, tools):
        self.tools = list(tools)
        if len(self.tools) == 1:
            message = f"Required command '{self.tools[0]}' is not installed."
        else:
            message = f"Missing required tools: {' '.join(self.tools)}"
        super().__init__(message)


class ValidationError(InstallerError):
    pass


class CommandError(InstallerError):
    pass


class CertificateError(InstallerError):
    pass


class PollTimeout(InstallerError):
    def __init__(self, description, attempts):
        self.description = description
        self.attempts = attempts
        super().__init__(f"{description} did not complete after {attempts} attempts.")
