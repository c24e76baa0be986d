from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from redis_exporter import constants


class ClientTLSSettings(BaseModel):
    """TLS material used when connecting to the Redis instance."""

    model_config = ConfigDict(frozen=True)

    cert_file: str = ""
    key_file: str = ""
    ca_cert_file: str = ""
    skip_verification: bool = False


class ServerTLSSettings(BaseModel):
    """TLS material used by the web listener serving scrape clients."""

    model_config = ConfigDict(frozen=True)

    cert_file: str = ""
    key_file: str = ""
    ca_cert_file: str = ""
    min_version: str = constants.DEFAULT_TLS_SERVER_MIN_VERSION

    @property
    def enabled(self) -> bool:
        return bool(self.cert_file) and bool(self.key_file)


class BuildInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str = constants.BUILD_VERSION
    commit_sha: str = constants.BUILD_COMMIT_SHA
    date: str = constants.BUILD_DATE


class ExporterOptions(BaseModel):
    """Options handed to the collection engine.

    Built once at startup and immutable afterwards; the engine instance it
    configures owns it for the life of the process.
    """

    model_config = ConfigDict(frozen=True)

    # Authentication against Redis
    user: str = ""
    password: str = ""
    password_map: dict[str, str] = Field(default_factory=dict)
    redis_pwd_file: str = ""

    # Key and stream inspection
    namespace: str = constants.DEFAULT_NAMESPACE
    config_command_name: str = constants.DEFAULT_CONFIG_COMMAND
    check_keys: str = ""
    check_single_keys: str = ""
    check_keys_batch_size: int = constants.DEFAULT_CHECK_KEYS_BATCH_SIZE
    check_key_groups: str = ""
    max_distinct_key_groups: int = constants.DEFAULT_MAX_DISTINCT_KEY_GROUPS
    check_streams: str = ""
    check_single_streams: str = ""
    streams_exclude_consumer_metrics: bool = False
    count_keys: str = ""
    lua_scripts: dict[str, bytes] = Field(default_factory=dict)

    # Feature toggles
    incl_system_metrics: bool = False
    incl_config_metrics: bool = False
    incl_modules_metrics: bool = False
    incl_metrics_for_empty_databases: bool = True
    disable_exporting_key_values: bool = False
    exclude_latency_histogram_metrics: bool = False
    redact_config_metrics: bool = True
    set_client_name: bool = True
    is_tile38: bool = False
    is_cluster: bool = False
    export_client_list: bool = False
    export_clients_incl_port: bool = False
    skip_check_keys_for_role_master: bool = False
    redis_metrics_only: bool = False
    ping_on_connect: bool = False

    connection_timeout: timedelta = timedelta(seconds=15)
    metrics_path: str = constants.DEFAULT_METRICS_PATH

    client_tls: ClientTLSSettings = Field(default_factory=ClientTLSSettings)
    server_tls: ServerTLSSettings = Field(default_factory=ServerTLSSettings)

    basic_auth_username: str = ""
    basic_auth_password: str = ""

    build_info: BuildInfo = Field(default_factory=BuildInfo)

    @model_validator(mode="after")
    def check_basic_auth_pair(self) -> "ExporterOptions":
        if bool(self.basic_auth_username) != bool(self.basic_auth_password):
            raise ValueError(
                "basic auth username and password must be provided together"
            )
        return self

    @property
    def basic_auth_enabled(self) -> bool:
        return bool(self.basic_auth_username) and bool(self.basic_auth_password)


class ServiceSettings(BaseModel):
    """Fully resolved configuration of one exporter process."""

    model_config = ConfigDict(frozen=True)

    redis_addr: str = constants.DEFAULT_REDIS_ADDR
    listen_address: str = constants.DEFAULT_LISTEN_ADDRESS
    exporter: ExporterOptions = Field(default_factory=ExporterOptions)

    def redacted_dump(self) -> dict[str, Any]:
        """Dump the settings as JSON-compatible data with secrets masked."""
        data = self.model_dump(mode="json", exclude={"exporter": {"lua_scripts"}})
        exporter = data["exporter"]
        exporter["lua_scripts"] = sorted(self.exporter.lua_scripts)
        exporter["password_map"] = {
            addr: constants.REDACTED for addr in self.exporter.password_map
        }
        for key in ("password", "basic_auth_password"):
            if exporter[key]:
                exporter[key] = constants.REDACTED
        return data
