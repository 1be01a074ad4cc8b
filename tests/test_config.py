"""Tests for environment-driven configuration and secret resolution."""

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from scripts.provisioning import config as config_module
from scripts.provisioning.config import load_config
from scripts.provisioning.secrets import resolve_database_url, resolve_secret

ENV_VARS = (
    "DATABASE_URL", "PG_HOST", "PG_PORT", "PG_USER", "PG_PASSWORD", "PG_DATABASE",
    "DB_MIN_CONNECTIONS", "DB_MAX_CONNECTIONS", "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY", "IDP_REQUEST_TIMEOUT_S", "ADMIN_ROLE_NAME",
    "RECONCILE_MAX_WORKERS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's local .env out of the tests
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)


@pytest.fixture
def required_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://app:pw@db:5432/shop")
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co/")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")


class TestLoadConfig:
    def test_defaults(self, required_env):
        config = load_config()

        assert config.database.url == "postgresql://app:pw@db:5432/shop"
        assert config.identity_provider.url == "https://project.supabase.co"
        assert config.identity_provider.service_role_key == "service-key"
        assert config.identity_provider.request_timeout_s == 30.0
        assert config.admin_role == "admin"
        assert config.max_workers == 4

    def test_overrides(self, required_env, monkeypatch):
        monkeypatch.setenv("ADMIN_ROLE_NAME", "superuser")
        monkeypatch.setenv("RECONCILE_MAX_WORKERS", "8")
        monkeypatch.setenv("IDP_REQUEST_TIMEOUT_S", "2.5")
        monkeypatch.setenv("DB_MAX_CONNECTIONS", "12")

        config = load_config()

        assert config.admin_role == "superuser"
        assert config.max_workers == 8
        assert config.identity_provider.request_timeout_s == 2.5
        assert config.database.max_connections == 12

    def test_service_key_not_in_repr(self, required_env):
        assert "service-key" not in repr(load_config())

    @pytest.mark.parametrize("missing", ["SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"])
    def test_required_identity_provider_settings(self, required_env, monkeypatch, missing):
        monkeypatch.delenv(missing)

        with pytest.raises(ValueError, match=missing):
            load_config()

    def test_service_key_from_secret_reference(self, required_env, monkeypatch):
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "aws-secret://storefront/supabase#service_role")
        with patch("scripts.provisioning.config.resolve_secret", return_value="resolved") as resolver:
            config = load_config()

        resolver.assert_called_once_with("aws-secret://storefront/supabase#service_role")
        assert config.identity_provider.service_role_key == "resolved"


class TestDatabaseUrl:
    def test_pg_variables(self, monkeypatch):
        monkeypatch.setenv("PG_HOST", "db")
        monkeypatch.setenv("PG_USER", "shop")
        monkeypatch.setenv("PG_PASSWORD", "pw")
        monkeypatch.setenv("PG_DATABASE", "storefront")

        assert resolve_database_url() == "postgresql://shop:pw@db:5432/storefront"

    def test_credentials_are_percent_encoded(self, monkeypatch):
        monkeypatch.setenv("PG_HOST", "db")
        monkeypatch.setenv("PG_USER", "shop@tenant")
        monkeypatch.setenv("PG_PASSWORD", "p@ss:w/rd")

        assert resolve_database_url() == "postgresql://shop%40tenant:p%40ss%3Aw%2Frd@db:5432/postgres"

    def test_no_default_password(self):
        with pytest.raises(ValueError, match="PG_PASSWORD"):
            resolve_database_url()


class TestResolveSecret:
    def test_plain_value_passes_through(self):
        assert resolve_secret("literal") == "literal"

    def test_aws_secret_json_key(self, monkeypatch):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": json.dumps({"password": "s3cret"})}
        boto3 = MagicMock()
        boto3.client.return_value = client
        monkeypatch.setitem(sys.modules, "boto3", boto3)

        assert resolve_secret("aws-secret://storefront/db#password") == "s3cret"
        client.get_secret_value.assert_called_once_with(SecretId="storefront/db")

    def test_aws_secret_whole_string(self, monkeypatch):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": "raw-value"}
        boto3 = MagicMock()
        boto3.client.return_value = client
        monkeypatch.setitem(sys.modules, "boto3", boto3)

        assert resolve_secret("aws-secret://storefront/key") == "raw-value"

    def test_aws_secret_missing_json_key(self, monkeypatch):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": json.dumps({"user": "app"})}
        boto3 = MagicMock()
        boto3.client.return_value = client
        monkeypatch.setitem(sys.modules, "boto3", boto3)

        with pytest.raises(ValueError, match="password"):
            resolve_secret("aws-secret://storefront/db#password")


class TestGcpSecret:
    @pytest.fixture
    def secret_client(self, monkeypatch):
        client = MagicMock()
        client.access_secret_version.return_value.payload.data = b"service-role-key\n"
        secretmanager = MagicMock()
        secretmanager.SecretManagerServiceClient.return_value = client
        google_cloud = MagicMock(secretmanager=secretmanager)
        monkeypatch.setitem(sys.modules, "google", MagicMock(cloud=google_cloud))
        monkeypatch.setitem(sys.modules, "google.cloud", google_cloud)
        monkeypatch.setitem(sys.modules, "google.cloud.secretmanager", secretmanager)
        monkeypatch.delenv("GCP_PROJECT_ID", raising=False)
        return client

    def test_short_name_uses_project_and_strips_newline(self, secret_client, monkeypatch):
        monkeypatch.setenv("GCP_PROJECT_ID", "storefront-prod")

        assert resolve_secret("gcp-secret://supabase-service-role") == "service-role-key"
        secret_client.access_secret_version.assert_called_once_with(
            request={"name": "projects/storefront-prod/secrets/supabase-service-role/versions/latest"}
        )

    def test_full_path_passes_through(self, secret_client):
        path = "projects/p/secrets/db-password/versions/3"

        resolve_secret(f"gcp-secret://{path}")

        secret_client.access_secret_version.assert_called_once_with(request={"name": path})

    def test_short_name_without_project_is_rejected(self, secret_client):
        with pytest.raises(ValueError, match="GCP_PROJECT_ID"):
            resolve_secret("gcp-secret://supabase-service-role")

        secret_client.access_secret_version.assert_not_called()
