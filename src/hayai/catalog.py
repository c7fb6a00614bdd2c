"""Static catalog of supported database engines.

Each engine is pure data: container image, the port the engine listens on
inside the container (``0`` for embedded engines without a network port), the
data directory inside the container, default environment, healthcheck and a
connection-URI template. Templates are ``str.format`` strings that may use the
engine's environment keys plus ``host``, ``port`` and ``name``.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .errors import ValidationError


@dataclass(frozen=True)
class Healthcheck:
    """Container healthcheck definition."""

    test: str
    interval: str = "10s"
    timeout: str = "5s"
    retries: int = 5


@dataclass(frozen=True)
class EngineSpec:
    """Catalog entry for one database engine."""

    id: str
    name: str
    category: str
    version: str
    image: str
    default_port: int
    volume_path: str
    uri_template: str
    environment: Mapping[str, str] = field(default_factory=dict)
    healthcheck: Healthcheck | None = None

    @property
    def embedded(self) -> bool:
        """Return ``True`` for engines that expose no network port."""
        return self.default_port == 0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "version": self.version,
            "image": self.image,
            "default_port": self.default_port,
            "volume_path": self.volume_path,
            "environment": dict(self.environment),
        }


_HTTP_URI = "http://{host}:{port}"
_POSTGRES_URI = "postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{host}:{port}/{POSTGRES_DB}"

ENGINES: tuple[EngineSpec, ...] = (
    EngineSpec(
        id="postgresql",
        name="PostgreSQL",
        category="sql",
        version="16",
        image="postgres:16-alpine",
        default_port=5432,
        volume_path="/var/lib/postgresql/data",
        uri_template=_POSTGRES_URI,
        environment={
            "POSTGRES_DB": "database",
            "POSTGRES_USER": "admin",
            "POSTGRES_PASSWORD": "password",
        },
        healthcheck=Healthcheck(test="pg_isready -U {POSTGRES_USER} -d {POSTGRES_DB}"),
    ),
    EngineSpec(
        id="mariadb",
        name="MariaDB",
        category="sql",
        version="11",
        image="mariadb:11",
        default_port=3306,
        volume_path="/var/lib/mysql",
        uri_template="mysql://{MYSQL_USER}:{MYSQL_PASSWORD}@{host}:{port}/{MYSQL_DATABASE}",
        environment={
            "MYSQL_ROOT_PASSWORD": "rootpassword",
            "MYSQL_DATABASE": "database",
            "MYSQL_USER": "admin",
            "MYSQL_PASSWORD": "password",
        },
        healthcheck=Healthcheck(test="healthcheck.sh --connect --innodb_initialized"),
    ),
    EngineSpec(
        id="sqlite",
        name="SQLite",
        category="embedded",
        version="3",
        image="alpine:latest",
        default_port=0,
        volume_path="/data",
        uri_template="sqlite:///{name}.db",
    ),
    EngineSpec(
        id="duckdb",
        name="DuckDB",
        category="embedded",
        version="1.0",
        image="alpine:latest",
        default_port=0,
        volume_path="/data",
        uri_template="duckdb:///{name}.duckdb",
    ),
    EngineSpec(
        id="leveldb",
        name="LevelDB",
        category="embedded",
        version="1.0",
        image="alpine:latest",
        default_port=0,
        volume_path="/data",
        uri_template="leveldb:///{name}",
    ),
    EngineSpec(
        id="redis",
        name="Redis",
        category="keyvalue",
        version="7.0",
        image="redis:7.0-alpine",
        default_port=6379,
        volume_path="/data",
        uri_template="redis://:{REDIS_PASSWORD}@{host}:{port}",
        environment={"REDIS_PASSWORD": "password"},
        healthcheck=Healthcheck(test="redis-cli ping", timeout="3s"),
    ),
    EngineSpec(
        id="cassandra",
        name="Apache Cassandra",
        category="widecolumn",
        version="4.1",
        image="cassandra:4.1",
        default_port=9042,
        volume_path="/var/lib/cassandra",
        uri_template="cassandra://{host}:{port}",
        environment={
            "CASSANDRA_CLUSTER_NAME": "HayaiCluster",
            "CASSANDRA_DC": "dc1",
            "CASSANDRA_RACK": "rack1",
        },
        healthcheck=Healthcheck(test="nodetool status", interval="30s", timeout="10s"),
    ),
    EngineSpec(
        id="qdrant",
        name="Qdrant",
        category="vector",
        version="1.7",
        image="qdrant/qdrant:v1.7.0",
        default_port=6333,
        volume_path="/qdrant/storage",
        uri_template=_HTTP_URI,
        environment={
            "QDRANT__SERVICE__HTTP_PORT": "6333",
            "QDRANT__SERVICE__GRPC_PORT": "6334",
        },
        healthcheck=Healthcheck(
            test="wget --no-verbose --tries=1 --spider http://localhost:6333/health || exit 1"
        ),
    ),
    EngineSpec(
        id="weaviate",
        name="Weaviate",
        category="vector",
        version="1.23",
        image="semitechnologies/weaviate:1.23.0",
        default_port=8080,
        volume_path="/var/lib/weaviate",
        uri_template=_HTTP_URI,
        environment={
            "QUERY_DEFAULTS_LIMIT": "25",
            "AUTHENTICATION_ANONYMOUS_ACCESS_ENABLED": "true",
            "PERSISTENCE_DATA_PATH": "/var/lib/weaviate",
            "DEFAULT_VECTORIZER_MODULE": "none",
        },
        healthcheck=Healthcheck(
            test=(
                "wget --no-verbose --tries=1 --spider "
                "http://localhost:8080/v1/.well-known/ready || exit 1"
            )
        ),
    ),
    EngineSpec(
        id="milvus",
        name="Milvus",
        category="vector",
        version="2.3",
        image="milvusdb/milvus:v2.3.0",
        default_port=19530,
        volume_path="/var/lib/milvus",
        uri_template=_HTTP_URI,
        environment={
            "ETCD_USE_EMBED": "true",
            "ETCD_DATA_DIR": "/var/lib/milvus/etcd",
            "COMMON_STORAGETYPE": "local",
        },
        healthcheck=Healthcheck(
            test="curl -f http://localhost:9091/healthz || exit 1",
            interval="30s",
            timeout="10s",
        ),
    ),
    EngineSpec(
        id="arangodb",
        name="ArangoDB",
        category="graph",
        version="3.11",
        image="arangodb:3.11",
        default_port=8529,
        volume_path="/var/lib/arangodb3",
        uri_template=_HTTP_URI,
        environment={"ARANGO_ROOT_PASSWORD": "password"},
        healthcheck=Healthcheck(test="curl -f http://localhost:8529/_api/version || exit 1"),
    ),
    EngineSpec(
        id="meilisearch",
        name="Meilisearch",
        category="search",
        version="1.5",
        image="getmeili/meilisearch:v1.5",
        default_port=7700,
        volume_path="/meili_data",
        uri_template=_HTTP_URI,
        environment={"MEILI_MASTER_KEY": "masterkey", "MEILI_ENV": "development"},
        healthcheck=Healthcheck(
            test="wget --no-verbose --tries=1 --spider http://localhost:7700/health || exit 1"
        ),
    ),
    EngineSpec(
        id="typesense",
        name="Typesense",
        category="search",
        version="0.25",
        image="typesense/typesense:0.25.0",
        default_port=8108,
        volume_path="/data",
        uri_template=_HTTP_URI,
        environment={"TYPESENSE_API_KEY": "xyz", "TYPESENSE_DATA_DIR": "/data"},
        healthcheck=Healthcheck(test="curl -f http://localhost:8108/health || exit 1"),
    ),
    EngineSpec(
        id="influxdb2",
        name="InfluxDB 2",
        category="timeseries",
        version="2.7",
        image="influxdb:2.7-alpine",
        default_port=8086,
        volume_path="/var/lib/influxdb2",
        uri_template=_HTTP_URI,
        environment={
            "DOCKER_INFLUXDB_INIT_MODE": "setup",
            "DOCKER_INFLUXDB_INIT_USERNAME": "admin",
            "DOCKER_INFLUXDB_INIT_PASSWORD": "password",
            "DOCKER_INFLUXDB_INIT_ORG": "hayai",
            "DOCKER_INFLUXDB_INIT_BUCKET": "default",
        },
        healthcheck=Healthcheck(test="curl -f http://localhost:8086/health || exit 1"),
    ),
    EngineSpec(
        id="timescaledb",
        name="TimescaleDB",
        category="timeseries",
        version="pg16",
        image="timescale/timescaledb:latest-pg16",
        default_port=5432,
        volume_path="/var/lib/postgresql/data",
        uri_template=_POSTGRES_URI,
        environment={
            "POSTGRES_DB": "hayai_db",
            "POSTGRES_USER": "admin",
            "POSTGRES_PASSWORD": "password",
        },
        healthcheck=Healthcheck(test="pg_isready -U {POSTGRES_USER} -d {POSTGRES_DB}"),
    ),
    EngineSpec(
        id="questdb",
        name="QuestDB",
        category="timeseries",
        version="latest",
        image="questdb/questdb:latest",
        default_port=9000,
        volume_path="/var/lib/questdb",
        uri_template=_HTTP_URI,
        healthcheck=Healthcheck(test="curl -f http://localhost:9000/status || exit 1"),
    ),
    EngineSpec(
        id="victoriametrics",
        name="VictoriaMetrics",
        category="timeseries",
        version="latest",
        image="victoriametrics/victoria-metrics:latest",
        default_port=8428,
        volume_path="/victoria-metrics-data",
        uri_template=_HTTP_URI,
        healthcheck=Healthcheck(
            test="wget --no-verbose --tries=1 --spider http://localhost:8428/health || exit 1"
        ),
    ),
)


class _TemplateValues(dict[str, object]):
    """Mapping that reports the first placeholder a template cannot fill."""

    def __missing__(self, key: str) -> object:
        raise ValidationError(f"Template placeholder '{key}' has no value.")


class EngineCatalog:
    """Lookup table over :data:`ENGINES` (or a supplied set of specs)."""

    def __init__(self, engines: Iterable[EngineSpec] = ENGINES) -> None:
        """Index *engines* by lower-cased id."""
        self._engines: dict[str, EngineSpec] = {}
        for spec in engines:
            self._engines[spec.id.lower()] = spec

    def lookup(self, engine_id: str) -> EngineSpec:
        """Return the catalog entry for *engine_id* or raise :class:`ValidationError`."""
        spec = self._engines.get(engine_id.strip().lower())
        if spec is None:
            available = ", ".join(self.engine_ids())
            raise ValidationError(f"Unknown engine '{engine_id}'. Available: {available}.")
        return spec

    def is_supported(self, engine_id: str) -> bool:
        """Return ``True`` when *engine_id* is in the catalog."""
        return engine_id.strip().lower() in self._engines

    def engine_ids(self) -> list[str]:
        """Return engine ids in catalog order."""
        return list(self._engines)

    def engines(self, category: str | None = None) -> list[EngineSpec]:
        """Return specs, optionally restricted to *category*."""
        specs = list(self._engines.values())
        if category is None:
            return specs
        return [spec for spec in specs if spec.category == category]

    def categories(self) -> list[str]:
        """Return the distinct categories in catalog order."""
        seen: dict[str, None] = {}
        for spec in self._engines.values():
            seen.setdefault(spec.category, None)
        return list(seen)


def render_connection_uri(
    spec: EngineSpec,
    environment: Mapping[str, str],
    *,
    port: int,
    name: str,
    host: str = "localhost",
) -> str:
    """Fill the engine's URI template for one instance."""
    values = _TemplateValues(environment)
    values.update({"host": host, "port": port, "name": name})
    return spec.uri_template.format_map(values)


def render_healthcheck_test(check: Healthcheck, environment: Mapping[str, str]) -> str:
    """Fill environment placeholders in a healthcheck command."""
    return check.test.format_map(_TemplateValues(environment))


__all__ = [
    "ENGINES",
    "EngineCatalog",
    "EngineSpec",
    "Healthcheck",
    "render_connection_uri",
    "render_healthcheck_test",
]
