class RedisExporterError(Exception):
    """Base class for fatal exporter startup and lifecycle errors."""


class ConfigParseError(RedisExporterError):
    """Exception raised when a configuration value cannot be parsed."""


class CredentialLoadError(RedisExporterError):
    """Exception raised when a password file or script cannot be loaded."""


class TLSConfigError(RedisExporterError):
    """Exception raised when TLS material is missing, mismatched or invalid."""


class ServerStartError(RedisExporterError):
    """Exception raised when the listener cannot bind or stops unexpectedly."""


class ShutdownTimeoutError(RedisExporterError):
    """Exception raised when in-flight requests outlive the shutdown deadline."""
