"""
Connection configuration for a stage.

A DataSourceConfig identifies one connection pool: two configs with the same
field values share a pool. Configs may be given as a model, a mapping, or a
URL such as ``mysql://user:pw@host:3306/db?echo=1``.
"""

from enum import Enum
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from dbstage.core.errors import ConfigError


class ProductTypeEnum(str, Enum):
    """Supported database product types (mysql, postgres)."""

    MYSQL = "mysql"
    POSTGRES = "postgres"


_DEFAULT_PORTS = {
    ProductTypeEnum.MYSQL: 3306,
    ProductTypeEnum.POSTGRES: 5432,
}

_URL_SCHEMES = {
    "mysql": ProductTypeEnum.MYSQL,
    "mysql+pymysql": ProductTypeEnum.MYSQL,
    "postgres": ProductTypeEnum.POSTGRES,
    "postgresql": ProductTypeEnum.POSTGRES,
    "postgresql+psycopg": ProductTypeEnum.POSTGRES,
}

_TRUTHY = ("1", "true", "yes", "on")


class DataSourceConfig(BaseModel):
    """
    Connection settings for one pool.

    The field set is closed: driver options beyond these (charset,
    connect_timeout, ssl, ...) are rejected as ConfigError rather than
    silently dropped. The connect timeout comes from DBSTAGE_CONNECT_TIMEOUT.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    product_type: ProductTypeEnum = ProductTypeEnum.MYSQL
    host: str = Field(min_length=1, max_length=255)
    port: int
    database: str | None = Field(default=None, max_length=255)
    username: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("username", "user"),
    )
    password: str = Field(default="", max_length=512)
    echo: bool = Field(
        default=False,
        description="Print each bound statement and its arguments before it runs.",
    )

    @model_validator(mode="before")
    @classmethod
    def _default_port(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("port") is not None:
            return data
        try:
            pt = ProductTypeEnum(data.get("product_type") or ProductTypeEnum.MYSQL)
        except ValueError:
            return data  # reported by field validation
        return {**data, "port": _DEFAULT_PORTS[pt]}

    @property
    def identity(self) -> str:
        """Canonical key used to cache the pool for this config."""
        return self.model_dump_json()


def _from_url(url: str) -> dict[str, Any]:
    parts = urlsplit(url)
    pt = _URL_SCHEMES.get(parts.scheme.lower())
    if pt is None:
        raise ConfigError(f"Unsupported connection URL scheme: {parts.scheme!r}")
    out: dict[str, Any] = {
        "product_type": pt,
        "host": parts.hostname,
        "port": parts.port,
        "username": unquote(parts.username) if parts.username else None,
        "password": unquote(parts.password) if parts.password else "",
    }
    database = parts.path.lstrip("/")
    if database:
        out["database"] = unquote(database)
    query = parse_qs(parts.query)
    if "echo" in query:
        out["echo"] = query["echo"][-1].strip().lower() in _TRUTHY
    return out


def resolve_config(config: Any) -> DataSourceConfig:
    """Validate *config* (model, mapping, or URL string) into a DataSourceConfig."""
    if isinstance(config, DataSourceConfig):
        return config
    if not config:
        raise ConfigError(
            "Null database configuration info; be sure to provide username, password, etc."
        )
    try:
        if isinstance(config, str):
            return DataSourceConfig.model_validate(_from_url(config.strip()))
        return DataSourceConfig.model_validate(dict(config))
    except ConfigError:
        raise
    except ValidationError as e:
        raise ConfigError(f"Invalid database configuration: {e}") from e
    except (TypeError, ValueError) as e:
        # malformed URL port, or a config that is not a mapping
        raise ConfigError(f"Invalid database configuration: {e}") from e
