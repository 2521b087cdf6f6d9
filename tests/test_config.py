from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from kube_snapshot.config import Settings
from kube_snapshot.retention import RetentionConfig


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.kafka_enabled is False
    assert settings.kafka_topic == "cluster-info"
    assert settings.kafka_partition is None
    assert settings.retention_max_age == timedelta(days=7)
    assert settings.retention_cleanup_interval == timedelta(hours=6)
    assert settings.broker_list == ["localhost:9092"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("KUBE_SNAPSHOT_KAFKA_ENABLED", "true")
    monkeypatch.setenv("KUBE_SNAPSHOT_KAFKA_BROKERS", "k1:9092, k2:9092,")
    monkeypatch.setenv("KUBE_SNAPSHOT_KAFKA_PARTITION", "3")
    monkeypatch.setenv("KUBE_SNAPSHOT_RETENTION_MAX_AGE", "PT12H")
    monkeypatch.setenv("KUBE_SNAPSHOT_KUBECONFIG", "/tmp/kubeconfig")

    settings = Settings(_env_file=None)

    assert settings.kafka_enabled is True
    assert settings.broker_list == ["k1:9092", "k2:9092"]
    assert settings.kafka_partition == 3
    assert settings.retention_max_age == timedelta(hours=12)
    assert settings.kubeconfig == Path("/tmp/kubeconfig")


def test_sqlalchemy_url_built_from_parts():
    settings = Settings(_env_file=None, db_host="db.internal", db_user="snap", db_password="pw", db_ssl_mode="require")

    url = settings.sqlalchemy_url

    assert url.drivername == "postgresql+psycopg2"
    assert url.host == "db.internal"
    assert url.username == "snap"
    assert url.query["sslmode"] == "require"


def test_database_url_takes_precedence():
    settings = Settings(_env_file=None, database_url="sqlite:///snapshots.db", db_host="ignored")

    assert settings.sqlalchemy_url == "sqlite:///snapshots.db"


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, kafka_compression="brotli")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, retention_delete_batch_size=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, retention_cleanup_interval=timedelta(0))


def test_retention_config_from_settings():
    settings = Settings(_env_file=None, retention_enabled=True, retention_max_snapshots=0)

    cfg = RetentionConfig.from_settings(settings)

    assert cfg.enabled is True
    assert cfg.max_snapshots == 0
    assert cfg.delete_batch_size == 50
