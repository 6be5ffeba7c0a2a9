"""Custom exceptions for kvmdeploy."""


class ProvisionError(RuntimeError):
    """Raised on unrecoverable configuration or provisioning errors."""


class ConfigError(ProvisionError):
    """The configuration file could not be read or parsed."""


class ConfigNotFound(ConfigError):
    pass


class ConfigFieldMissing(ConfigError):
    """A required field is absent or has the wrong type."""

    def __init__(self, field: str, detail: str) -> None:
        super().__init__(f"Config field '{field}' {detail}")
        self.field = field


class SourceUnreachable(ProvisionError):
    pass


class TransferFailed(ProvisionError):
    pass


class DelegateCommandFailed(ProvisionError):
    """An external command (package manager, systemctl, virt-install) failed."""

    def __init__(self, message: str, stderr: str = "") -> None:
        full = message
        if stderr.strip():
            full = f"{message}\n{stderr.rstrip()}"
        super().__init__(full)
        self.stderr = stderr


class FirmwareInstallError(ProvisionError):
    pass


class HostLocked(ProvisionError):
    pass
