"""Connection configuration models and profile file helpers."""

from __future__ import annotations

import json
import ssl
from pathlib import Path
from typing import Any, Mapping

import tomllib

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymysql.constants import CLIENT

CONFIG_FILE = Path.home() / ".config" / "mysqlguard" / "config.toml"

DEFAULT_PORT = 3306


class PoolSettings(BaseModel):
    """Pool tuning knobs. Durations are milliseconds."""

    model_config = ConfigDict(frozen=True)

    connection_limit: int = Field(default=5, ge=1)
    max_idle: int = Field(default=5, ge=0)
    idle_timeout: int = Field(default=30000, ge=0)
    keep_alive: bool = True
    keep_alive_initial_delay: int = Field(default=5000, ge=0)
    keep_alive_interval: int = Field(default=5000, gt=0)
    # 0 means unbounded; callers queue forever once every connection is busy.
    queue_limit: int = Field(default=0, ge=0)
    probe_timeout: int | None = Field(default=None, gt=0)
    query_timeout: int | None = Field(default=None, gt=0)


class ConnectionConfig(BaseModel):
    """Immutable description of one MySQL target."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: str = Field(min_length=1)
    database: str = Field(min_length=1)
    name: str | None = None
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    port: int = DEFAULT_PORT
    ssl: bool | str | dict[str, Any] | None = None
    connection_timeout: int = Field(default=30000, gt=0, alias="connectionTimeout")
    aws_iam_auth: bool = Field(default=False, alias="awsIamAuth")
    aws_region: str | None = Field(default=None, alias="awsRegion")
    multiple_statements: bool = True
    pool: PoolSettings = Field(default_factory=PoolSettings)

    @field_validator("port", mode="before")
    @classmethod
    def _coerce_port(cls, value: object) -> int:
        if value is None or value == "":
            return DEFAULT_PORT
        if isinstance(value, bool):
            raise ValueError(f"Invalid port value for MySQL: {value!r}")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value.strip(), 10)
            except ValueError:
                pass
        raise ValueError(f"Invalid port value for MySQL: {value!r}")

    @property
    def label(self) -> str:
        return self.name or f"{self.host}/{self.database}"

    @property
    def connect_timeout_seconds(self) -> float:
        return self.connection_timeout / 1000

    @property
    def probe_timeout_seconds(self) -> float:
        timeout = self.pool.probe_timeout or self.connection_timeout
        return timeout / 1000

    @property
    def query_timeout_seconds(self) -> float | None:
        if self.pool.query_timeout is None:
            return None
        return self.pool.query_timeout / 1000

    def driver_options(self, password: str | None) -> dict[str, Any]:
        """Build ``aiomysql.create_pool`` keyword arguments around *password*.

        Called once per pool construction; the returned dict is the only place the
        live secret is stored.
        """

        options: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.database,
            "password": password or "",
            "connect_timeout": self.connect_timeout_seconds,
            "autocommit": True,
            "minsize": min(1, self.pool.max_idle),
            "maxsize": self.pool.connection_limit,
            "pool_recycle": self.pool.idle_timeout / 1000 if self.pool.idle_timeout else -1,
        }
        if self.user:
            options["user"] = self.user
        if self.multiple_statements:
            options["client_flag"] = CLIENT.MULTI_STATEMENTS
        context = resolve_ssl(self.ssl, iam_auth=self.aws_iam_auth)
        if context is not None:
            options["ssl"] = context
        return options


def resolve_ssl(option: bool | str | Mapping[str, Any] | None, *, iam_auth: bool) -> ssl.SSLContext | None:
    """Translate the ``ssl`` option into an ``SSLContext`` (or ``None`` for plain TCP).

    ``True`` yields a verifying default context, except with IAM auth where the RDS
    gateway is trusted and verification is switched off. Strings name a CA bundle;
    mappings carry ``ca``/``cert``/``key``/``check_hostname``/``reject_unauthorized``.
    """

    if option is None or option is False:
        return None
    if option is True:
        context = ssl.create_default_context()
        if iam_auth:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context
    if isinstance(option, str):
        return ssl.create_default_context(cafile=option)
    context = ssl.create_default_context(cafile=option.get("ca"))
    if option.get("cert"):
        context.load_cert_chain(option["cert"], keyfile=option.get("key"))
    verify = option.get("reject_unauthorized", option.get("rejectUnauthorized", True))
    # ssl refuses hostname checks once certificate verification is off
    context.check_hostname = bool(verify) and bool(option.get("check_hostname", verify))
    if not verify:
        context.verify_mode = ssl.CERT_NONE
    return context


class AppConfig(BaseModel):
    """Shape of the profile configuration file."""

    profiles: list[ConnectionConfig] = Field(default_factory=list)
    active_profile: str | None = None

    def profile(self, name: str | None = None) -> ConnectionConfig:
        """Return the named profile, else the active one, else the first."""

        target = name or self.active_profile
        if target is None:
            if not self.profiles:
                raise LookupError("No connection profiles configured.")
            return self.profiles[0]
        for profile in self.profiles:
            if profile.name == target:
                return profile
        raise LookupError(f"Profile '{target}' not found.")

    def with_profile(self, profile: ConnectionConfig) -> AppConfig:
        """Return a copy with *profile* added or replaced by name."""

        profiles = [entry for entry in self.profiles if entry.name != profile.name]
        profiles.append(profile)
        return self.model_copy(update={"profiles": profiles})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        with CONFIG_FILE.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    profiles: list[ConnectionConfig] = []
    for entry in raw.get("profiles", []):
        if isinstance(entry, dict) and entry.get("host") and entry.get("database"):
            profiles.append(ConnectionConfig.model_validate(entry))
    active = raw.get("active_profile")
    return AppConfig(
        profiles=profiles,
        active_profile=active if isinstance(active, str) else None,
    )


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk. Passwords are never written."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    if config.active_profile:
        lines.append(f'active_profile = "{config.active_profile}"')
        lines.append("")
    defaults = PoolSettings()
    for profile in config.profiles:
        lines.append("[[profiles]]")
        if profile.name:
            lines.append(f'name = "{profile.name}"')
        lines.append(f'host = "{profile.host}"')
        lines.append(f"port = {profile.port}")
        lines.append(f'database = "{profile.database}"')
        if profile.user:
            lines.append(f'user = "{profile.user}"')
        if isinstance(profile.ssl, bool):
            lines.append(f"ssl = {str(profile.ssl).lower()}")
        elif isinstance(profile.ssl, str):
            lines.append(f"ssl = {_toml_value(profile.ssl)}")
        if profile.connection_timeout != 30000:
            lines.append(f"connection_timeout = {profile.connection_timeout}")
        if profile.aws_iam_auth:
            lines.append("aws_iam_auth = true")
        if profile.aws_region:
            lines.append(f'aws_region = "{profile.aws_region}"')
        if not profile.multiple_statements:
            lines.append("multiple_statements = false")
        if isinstance(profile.ssl, dict) and profile.ssl:
            lines.append("")
            lines.append("[profiles.ssl]")
            for key, value in profile.ssl.items():
                lines.append(f"{key} = {_toml_value(value)}")
        overrides = {
            key: value
            for key, value in profile.pool.model_dump().items()
            if value is not None and value != getattr(defaults, key)
        }
        if overrides:
            lines.append("")
            lines.append("[profiles.pool]")
            for key, value in overrides.items():
                rendered = str(value).lower() if isinstance(value, bool) else str(value)
                lines.append(f"{key} = {rendered}")
        lines.append("")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(str(value))


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConnectionConfig",
    "DEFAULT_PORT",
    "PoolSettings",
    "load_config",
    "resolve_ssl",
    "save_config",
]
