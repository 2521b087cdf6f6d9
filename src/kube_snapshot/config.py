"""Configuration and environment for the snapshot pipeline."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    """Pipeline settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="KUBE_SNAPSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; in-cluster config is tried first",
    )
    context: str | None = Field(default=None, description="Kubernetes context to use")
    list_page_size: int = Field(
        default=500,
        ge=1,
        le=5000,
        description="Items requested per page when listing a resource kind",
    )

    # Kafka
    kafka_enabled: bool = Field(
        default=False,
        description="Publish snapshots to Kafka instead of writing to the database",
    )
    kafka_brokers: str = Field(default="localhost:9092", description="Comma-separated broker list")
    kafka_topic: str = Field(default="cluster-info", description="Topic carrying snapshots")
    kafka_partition: int | None = Field(
        default=None,
        ge=0,
        description="Partition override for published snapshots",
    )
    kafka_group_id: str = Field(default="cluster-info-consumer", description="Consumer group id")
    kafka_session_timeout_ms: int = Field(default=30_000, ge=1_000)
    kafka_heartbeat_interval_ms: int = Field(default=3_000, ge=100)
    kafka_send_retries: int = Field(default=5, ge=0, le=100)
    kafka_compression: Literal["none", "gzip", "snappy", "lz4", "zstd"] = Field(default="snappy")

    # Database
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL; overrides the db_* fields when set",
    )
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_user: str = Field(default="postgres")
    db_password: str = Field(default="")
    db_name: str = Field(default="postgres")
    db_ssl_mode: str = Field(default="disable")

    # Retention
    retention_enabled: bool = Field(default=False)
    retention_max_age: timedelta = Field(
        default=timedelta(days=7),
        description="Snapshots older than this are deleted; zero disables the age policy",
    )
    retention_max_snapshots: int = Field(
        default=100,
        ge=0,
        description="Maximum snapshots kept; zero disables the count policy",
    )
    retention_cleanup_interval: timedelta = Field(
        default=timedelta(hours=6),
        gt=timedelta(0),
        description="Pause between retention passes while consuming",
    )
    retention_delete_batch_size: int = Field(default=50, ge=1, le=10_000)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def broker_list(self) -> list[str]:
        return [b.strip() for b in self.kafka_brokers.split(",") if b.strip()]

    @property
    def sqlalchemy_url(self) -> str | URL:
        """Database URL, built from the db_* fields unless database_url is set."""
        if self.database_url:
            return self.database_url
        return URL.create(
            "postgresql+psycopg2",
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
            query={"sslmode": self.db_ssl_mode},
        )


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
