class TenantStreamError(Exception):
    """Base class for errors raised by tenant_stream."""


class ConfigurationError(TenantStreamError):
    """Fatal misconfiguration; the relay must not start."""


class MissingTenantError(TenantStreamError, ValueError):
    def __init__(self, message: str = "tenant context is required"):
        super().__init__(message)


class InvalidPayloadError(TenantStreamError, ValueError):
    pass


class InvalidLimitError(TenantStreamError, ValueError):
    pass
