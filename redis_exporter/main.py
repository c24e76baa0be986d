#!/usr/bin/env python3
"""Main entrypoint for the Redis metrics exporter."""

import argparse
import json
import logging
import platform
import sys
from dataclasses import dataclass
from typing import Any, Callable, cast

from pydantic import ValidationError
from pythonjsonlogger.json import JsonFormatter
from rich.console import Console
from rich.logging import RichHandler

from redis_exporter import constants
from redis_exporter.config import parse_bool, parse_duration, parse_int, resolve
from redis_exporter.credentials import load_password_map, load_scripts
from redis_exporter.errors import (
    ConfigParseError,
    CredentialLoadError,
    ServerStartError,
    ShutdownTimeoutError,
    TLSConfigError,
)
from redis_exporter.exporter import ExporterFactory, new_redis_exporter
from redis_exporter.registry import assemble_registry, attach_engine
from redis_exporter.server import MetricsServer
from redis_exporter.settings import (
    BuildInfo,
    ClientTLSSettings,
    ExporterOptions,
    ServerTLSSettings,
    ServiceSettings,
)
from redis_exporter.tls import validate_client_key_pair

TEXT_LOG_FORMAT = (
    "%(asctime)s [%(name)s:%(filename)s:%(lineno)d] %(levelname)s: %(message)s"
)
JSON_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@dataclass(frozen=True)
class Option:
    """A configuration value settable by flag or environment variable."""

    dest: str
    flag: str
    env: str
    default: Any
    help: str
    parse: Callable[[str], Any] | None = None


OPTIONS: tuple[Option, ...] = (
    Option("redis_addr", "--redis.addr", "REDIS_ADDR", constants.DEFAULT_REDIS_ADDR, "Address of the Redis instance to scrape"),
    Option("redis_user", "--redis.user", "REDIS_USER", "", "User name to use for authentication (Redis ACL for Redis 6.0 and newer)"),
    Option("redis_password", "--redis.password", "REDIS_PASSWORD", "", "Password of the Redis instance to scrape"),
    Option("redis_password_file", "--redis.password-file", "REDIS_PASSWORD_FILE", "", "Password file of the Redis instance to scrape"),
    Option("namespace", "--namespace", "REDIS_EXPORTER_NAMESPACE", constants.DEFAULT_NAMESPACE, "Namespace for metrics"),
    Option("check_keys", "--check-keys", "REDIS_EXPORTER_CHECK_KEYS", "", "Comma separated list of key-patterns to export value and length/size, searched for with SCAN"),
    Option("check_single_keys", "--check-single-keys", "REDIS_EXPORTER_CHECK_SINGLE_KEYS", "", "Comma separated list of single keys to export value and length/size"),
    Option("check_key_groups", "--check-key-groups", "REDIS_EXPORTER_CHECK_KEY_GROUPS", "", "Comma separated list of lua regex for grouping keys"),
    Option("check_streams", "--check-streams", "REDIS_EXPORTER_CHECK_STREAMS", "", "Comma separated list of stream-patterns to export info about streams, groups and consumers, searched for with SCAN"),
    Option("check_single_streams", "--check-single-streams", "REDIS_EXPORTER_CHECK_SINGLE_STREAMS", "", "Comma separated list of single streams to export info about streams, groups and consumers"),
    Option("streams_exclude_consumer_metrics", "--streams-exclude-consumer-metrics", "REDIS_EXPORTER_STREAMS_EXCLUDE_CONSUMER_METRICS", False, "Don't collect per consumer metrics for streams (decreases cardinality)", parse_bool),
    Option("count_keys", "--count-keys", "REDIS_EXPORTER_COUNT_KEYS", "", "Comma separated list of patterns to count (eg: 'db0=production_*,db3=sessions:*'), searched for with SCAN"),
    Option("check_keys_batch_size", "--check-keys-batch-size", "REDIS_EXPORTER_CHECK_KEYS_BATCH_SIZE", constants.DEFAULT_CHECK_KEYS_BATCH_SIZE, "Approximate number of keys to process in each execution, larger value speeds up scanning", parse_int),
    Option("script", "--script", "REDIS_EXPORTER_SCRIPT", "", "Comma separated list of path(s) to Redis Lua script(s) for gathering extra metrics"),
    Option("listen_address", "--web.listen-address", "REDIS_EXPORTER_WEB_LISTEN_ADDRESS", constants.DEFAULT_LISTEN_ADDRESS, "Address to listen on for web interface and telemetry"),
    Option("metrics_path", "--web.telemetry-path", "REDIS_EXPORTER_WEB_TELEMETRY_PATH", constants.DEFAULT_METRICS_PATH, "Path under which to expose metrics"),
    Option("log_format", "--log-format", "REDIS_EXPORTER_LOG_FORMAT", constants.DEFAULT_LOG_FORMAT, "Log format, valid options are txt and json"),
    Option("config_command", "--config-command", "REDIS_EXPORTER_CONFIG_COMMAND", constants.DEFAULT_CONFIG_COMMAND, "What to use for the CONFIG command, set to \"-\" to skip config metrics extraction"),
    Option("connection_timeout", "--connection-timeout", "REDIS_EXPORTER_CONNECTION_TIMEOUT", constants.DEFAULT_CONNECTION_TIMEOUT, "Timeout for connection to Redis instance"),
    Option("tls_client_key_file", "--tls-client-key-file", "REDIS_EXPORTER_TLS_CLIENT_KEY_FILE", "", "Name of the client key file (including full path) if the server requires TLS client authentication"),
    Option("tls_client_cert_file", "--tls-client-cert-file", "REDIS_EXPORTER_TLS_CLIENT_CERT_FILE", "", "Name of the client certificate file (including full path) if the server requires TLS client authentication"),
    Option("tls_ca_cert_file", "--tls-ca-cert-file", "REDIS_EXPORTER_TLS_CA_CERT_FILE", "", "Name of the CA certificate file (including full path) if the server requires TLS client authentication"),
    Option("tls_server_key_file", "--tls-server-key-file", "REDIS_EXPORTER_TLS_SERVER_KEY_FILE", "", "Name of the server key file (including full path) if the web interface and telemetry should use TLS"),
    Option("tls_server_cert_file", "--tls-server-cert-file", "REDIS_EXPORTER_TLS_SERVER_CERT_FILE", "", "Name of the server certificate file (including full path) if the web interface and telemetry should use TLS"),
    Option("tls_server_ca_cert_file", "--tls-server-ca-cert-file", "REDIS_EXPORTER_TLS_SERVER_CA_CERT_FILE", "", "Name of the CA certificate file (including full path) if the web interface and telemetry should require TLS client authentication"),
    Option("tls_server_min_version", "--tls-server-min-version", "REDIS_EXPORTER_TLS_SERVER_MIN_VERSION", constants.DEFAULT_TLS_SERVER_MIN_VERSION, "Minimum TLS version that is acceptable by the web interface and telemetry when using TLS"),
    Option("max_distinct_key_groups", "--max-distinct-key-groups", "REDIS_EXPORTER_MAX_DISTINCT_KEY_GROUPS", constants.DEFAULT_MAX_DISTINCT_KEY_GROUPS, "The maximum number of distinct key groups with the most memory utilization to present as distinct metrics per database", parse_int),
    Option("debug", "--debug", "REDIS_EXPORTER_DEBUG", False, "Output verbose debug information", parse_bool),
    Option("set_client_name", "--set-client-name", "REDIS_EXPORTER_SET_CLIENT_NAME", True, "Whether to set client name to redis_exporter", parse_bool),
    Option("is_tile38", "--is-tile38", "REDIS_EXPORTER_IS_TILE38", False, "Whether to scrape Tile38 specific metrics", parse_bool),
    Option("is_cluster", "--is-cluster", "REDIS_EXPORTER_IS_CLUSTER", False, "Whether this is a redis cluster (Enable this if you need to fetch key level data on a Redis Cluster)", parse_bool),
    Option("export_client_list", "--export-client-list", "REDIS_EXPORTER_EXPORT_CLIENT_LIST", False, "Whether to scrape Client List specific metrics", parse_bool),
    Option("export_client_port", "--export-client-port", "REDIS_EXPORTER_EXPORT_CLIENT_PORT", False, "Whether to include the client's port when exporting the client list", parse_bool),
    Option("redis_only_metrics", "--redis-only-metrics", "REDIS_EXPORTER_REDIS_ONLY_METRICS", False, "Whether to only export Redis metrics, without process and runtime metrics", parse_bool),
    Option("ping_on_connect", "--ping-on-connect", "REDIS_EXPORTER_PING_ON_CONNECT", False, "Whether to ping the redis instance after connecting", parse_bool),
    Option("include_config_metrics", "--include-config-metrics", "REDIS_EXPORTER_INCL_CONFIG_METRICS", False, "Whether to include all config settings as metrics", parse_bool),
    Option("include_modules_metrics", "--include-modules-metrics", "REDIS_EXPORTER_INCL_MODULES_METRICS", False, "Whether to collect Redis Modules metrics", parse_bool),
    Option("disable_exporting_key_values", "--disable-exporting-key-values", "REDIS_EXPORTER_DISABLE_EXPORTING_KEY_VALUES", False, "Whether to disable values of keys stored in redis as labels or not when using check-keys/check-single-key", parse_bool),
    Option("exclude_latency_histogram_metrics", "--exclude-latency-histogram-metrics", "REDIS_EXPORTER_EXCLUDE_LATENCY_HISTOGRAM_METRICS", False, "Do not try to collect latency histogram metrics", parse_bool),
    Option("redact_config_metrics", "--redact-config-metrics", "REDIS_EXPORTER_REDACT_CONFIG_METRICS", True, "Whether to redact config settings that include potentially sensitive information like passwords", parse_bool),
    Option("include_system_metrics", "--include-system-metrics", "REDIS_EXPORTER_INCL_SYSTEM_METRICS", False, "Whether to include system metrics like e.g. redis_total_system_memory_bytes", parse_bool),
    Option("skip_tls_verification", "--skip-tls-verification", "REDIS_EXPORTER_SKIP_TLS_VERIFICATION", False, "Whether to to skip TLS verification", parse_bool),
    Option("skip_checkkeys_for_role_master", "--skip-checkkeys-for-role-master", "REDIS_EXPORTER_SKIP_CHECKKEYS_FOR_ROLE_MASTER", False, "Whether to skip gathering the check-keys metrics (size, val) when the instance is of type master", parse_bool),
    Option("basic_auth_username", "--basic-auth-username", "REDIS_EXPORTER_BASIC_AUTH_USERNAME", "", "Username for basic authentication"),
    Option("basic_auth_password", "--basic-auth-password", "REDIS_EXPORTER_BASIC_AUTH_PASSWORD", "", "Password for basic authentication"),
    Option("include_metrics_for_empty_databases", "--include-metrics-for-empty-databases", "REDIS_EXPORTER_INCL_METRICS_FOR_EMPTY_DATABASES", True, "Whether to emit db metrics (like db_keys) for empty databases", parse_bool),
)


class Args(argparse.Namespace):
    version: bool
    rich_logs: bool
    print_config_and_exit: bool


logger = logging.getLogger(__name__)


def parse_args() -> Args:
    """Parse command line arguments.

    Every option defaults to ``None`` so that an explicitly supplied flag can
    be told apart from one left to the environment or the built-in default.
    """
    parser = argparse.ArgumentParser(
        description="Prometheus exporter for Redis metrics",
        epilog="Every option can also be set through the environment variable shown in its help.",
    )

    for option in OPTIONS:
        help_text = f"{option.help} (env: {option.env}, default: {option.default!r})"
        if option.parse is parse_bool:
            parser.add_argument(
                option.flag,
                dest=option.dest,
                action=argparse.BooleanOptionalAction,
                default=None,
                help=help_text,
            )
        else:
            parser.add_argument(
                option.flag,
                dest=option.dest,
                type=option.parse or str,
                default=None,
                help=help_text,
            )

    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information and exit",
    )

    parser.add_argument(
        "--rich-logs",
        action="store_true",
        help="Enable rich colored logging output (txt log format only)",
    )

    parser.add_argument(
        "--print-config-and-exit",
        action="store_true",
        help="Print the resolved configuration as JSON and exit without serving",
    )

    return cast(Args, parser.parse_args())


def resolve_options(args: argparse.Namespace) -> dict[str, Any]:
    """Resolve every option: explicit flag, then environment, then default."""
    return {
        option.dest: resolve(
            getattr(args, option.dest, None), option.env, option.default, option.parse
        )
        for option in OPTIONS
    }


def configure_logging(
    log_format: str = constants.DEFAULT_LOG_FORMAT,
    debug: bool = False,
    use_rich: bool = False,
) -> None:
    """Configure logging for the exporter.

    Args:
        log_format: ``json`` for structured logs, anything else for text
        debug: Whether to log at DEBUG instead of INFO
        use_rich: Whether to use rich colored logging for text logs
    """
    level = logging.DEBUG if debug else logging.INFO

    if log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter(JSON_LOG_FORMAT))
        logging.basicConfig(level=level, handlers=[handler])
    elif use_rich:
        logging.basicConfig(
            level=level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[
                RichHandler(
                    console=Console(stderr=True),
                    show_path=True,
                    show_time=True,
                    show_level=True,
                    rich_tracebacks=True,
                )
            ],
        )
    else:
        logging.basicConfig(level=level, format=TEXT_LOG_FORMAT)

    if debug:
        logger.debug("Enabling debug output")


def version_string() -> str:
    return (
        f"Redis Metrics Exporter {constants.BUILD_VERSION}    "
        f"build date: {constants.BUILD_DATE}    "
        f"sha1: {constants.BUILD_COMMIT_SHA}    "
        f"Python: {platform.python_version()}    "
        f"OS: {platform.system().lower()}    "
        f"ARCH: {platform.machine()}"
    )


def build_settings(values: dict[str, Any]) -> ServiceSettings:
    """Turn resolved option values into the immutable service settings.

    Loads the password file and Lua scripts and checks the client TLS key
    pair, so every fatal configuration problem surfaces before anything
    is bound.

    Raises:
        ConfigParseError: If the connection timeout is not a valid duration
        CredentialLoadError: If the password file or a script cannot be read
        TLSConfigError: If only one of the client cert and key is given
        ValidationError: If the assembled options are invalid
    """
    try:
        connection_timeout = parse_duration(values["connection_timeout"])
    except ConfigParseError as e:
        raise ConfigParseError(
            f"Couldn't parse connection timeout duration, err: {e}"
        ) from e

    password_map: dict[str, str] = {}
    if not values["redis_password"] and values["redis_password_file"]:
        password_map = load_password_map(values["redis_password_file"])

    lua_scripts = load_scripts(values["script"])

    validate_client_key_pair(
        values["tls_client_cert_file"], values["tls_client_key_file"]
    )

    options = ExporterOptions(
        user=values["redis_user"],
        password=values["redis_password"],
        password_map=password_map,
        redis_pwd_file=values["redis_password_file"],
        namespace=values["namespace"],
        config_command_name=values["config_command"],
        check_keys=values["check_keys"],
        check_single_keys=values["check_single_keys"],
        check_keys_batch_size=values["check_keys_batch_size"],
        check_key_groups=values["check_key_groups"],
        max_distinct_key_groups=values["max_distinct_key_groups"],
        check_streams=values["check_streams"],
        check_single_streams=values["check_single_streams"],
        streams_exclude_consumer_metrics=values["streams_exclude_consumer_metrics"],
        count_keys=values["count_keys"],
        lua_scripts=lua_scripts,
        incl_system_metrics=values["include_system_metrics"],
        incl_config_metrics=values["include_config_metrics"],
        incl_modules_metrics=values["include_modules_metrics"],
        incl_metrics_for_empty_databases=values["include_metrics_for_empty_databases"],
        disable_exporting_key_values=values["disable_exporting_key_values"],
        exclude_latency_histogram_metrics=values["exclude_latency_histogram_metrics"],
        redact_config_metrics=values["redact_config_metrics"],
        set_client_name=values["set_client_name"],
        is_tile38=values["is_tile38"],
        is_cluster=values["is_cluster"],
        export_client_list=values["export_client_list"],
        export_clients_incl_port=values["export_client_port"],
        skip_check_keys_for_role_master=values["skip_checkkeys_for_role_master"],
        redis_metrics_only=values["redis_only_metrics"],
        ping_on_connect=values["ping_on_connect"],
        connection_timeout=connection_timeout,
        metrics_path=values["metrics_path"],
        client_tls=ClientTLSSettings(
            cert_file=values["tls_client_cert_file"],
            key_file=values["tls_client_key_file"],
            ca_cert_file=values["tls_ca_cert_file"],
            skip_verification=values["skip_tls_verification"],
        ),
        server_tls=ServerTLSSettings(
            cert_file=values["tls_server_cert_file"],
            key_file=values["tls_server_key_file"],
            ca_cert_file=values["tls_server_ca_cert_file"],
            min_version=values["tls_server_min_version"],
        ),
        basic_auth_username=values["basic_auth_username"],
        basic_auth_password=values["basic_auth_password"],
        build_info=BuildInfo(),
    )

    return ServiceSettings(
        redis_addr=values["redis_addr"],
        listen_address=values["listen_address"],
        exporter=options,
    )


def create_server(
    settings: ServiceSettings, exporter_factory: ExporterFactory
) -> MetricsServer:
    """Wire registry, collection engine and TLS into a bound, not yet started server."""
    options = settings.exporter
    registry = assemble_registry(options.redis_metrics_only)
    exporter = exporter_factory(settings.redis_addr, options, registry)
    attach_engine(registry, exporter)

    # Verify that initial client keypair and CA are accepted
    exporter.create_client_tls_config()

    server_tls = options.server_tls
    ssl_context = None
    if bool(server_tls.cert_file) != bool(server_tls.key_file):
        logger.warning(
            "TLS server cert file and key file should both be set, serving plaintext"
        )
    if server_tls.enabled:
        logger.debug(
            "Bind as TLS using cert %s and key %s",
            server_tls.cert_file,
            server_tls.key_file,
        )
        ssl_context = exporter.create_server_tls_config(
            server_tls.cert_file,
            server_tls.key_file,
            server_tls.ca_cert_file,
            server_tls.min_version,
        )

    logger.info("Providing metrics at %s%s", settings.listen_address, options.metrics_path)
    logger.debug("Configured redis addr: %r", settings.redis_addr)
    return MetricsServer(settings.listen_address, exporter, ssl_context)


def main(exporter_factory: ExporterFactory = new_redis_exporter) -> int:
    """Main function."""
    args = parse_args()

    if args.version:
        print(version_string())
        return 0

    values = resolve_options(args)
    configure_logging(values["log_format"], values["debug"], args.rich_logs)

    logger.info(version_string())

    try:
        settings = build_settings(values)

        if args.print_config_and_exit:
            logger.info("Printing resolved configuration")
            print(json.dumps(settings.redacted_dump(), indent=2, sort_keys=True))
            return 0

        server = create_server(settings, exporter_factory)
        server.run()

    except ValidationError as e:
        logger.error(
            "Invalid config\n"
            + "\n".join(
                [
                    f"{'.'.join([str(loc) for loc in err['loc']]) or 'options'}: {err['msg']}"
                    for err in e.errors()
                ]
            )
        )
        return 1
    except ConfigParseError as e:
        logger.error("Invalid config: %s", e)
        return 1
    except CredentialLoadError as e:
        logger.error("%s", e)
        return 1
    except TLSConfigError as e:
        logger.error("TLS configuration error: %s", e)
        return 1
    except ServerStartError as e:
        logger.error("%s", e)
        return 1
    except ShutdownTimeoutError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Exporter stopped by user")
        return 0
    except Exception as e:
        logger.error("Error running exporter: %s", e, exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
