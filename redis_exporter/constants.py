import os

from redis_exporter import __version__

BUILD_PLACEHOLDER = "<<< filled in by build >>>"

# Filled in by the build pipeline through the environment of the image
BUILD_VERSION = os.environ.get("REDIS_EXPORTER_BUILD_VERSION", __version__)
BUILD_DATE = os.environ.get("REDIS_EXPORTER_BUILD_DATE", BUILD_PLACEHOLDER)
BUILD_COMMIT_SHA = os.environ.get("REDIS_EXPORTER_BUILD_COMMIT_SHA", BUILD_PLACEHOLDER)

# Backend defaults
DEFAULT_REDIS_ADDR = "redis://localhost:6379"
DEFAULT_NAMESPACE = "redis"
DEFAULT_CONFIG_COMMAND = "CONFIG"
DEFAULT_CONNECTION_TIMEOUT = "15s"
DEFAULT_CHECK_KEYS_BATCH_SIZE = 1000
DEFAULT_MAX_DISTINCT_KEY_GROUPS = 100

# Web defaults
DEFAULT_LISTEN_ADDRESS = ":9121"
DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_LOG_FORMAT = "txt"

# TLS
DEFAULT_TLS_SERVER_MIN_VERSION = "TLS1.2"

# Timing constants (in seconds)
SHUTDOWN_TIMEOUT = 10
SERVE_POLL_INTERVAL = 0.5

REDACTED = "***"
