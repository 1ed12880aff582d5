"""Unit tests for the storage factory."""

from unittest.mock import MagicMock, patch

import pytest

from unistore.azure_client import AzureBlobStorageBackend
from unistore.client import ObjectStorageClient
from unistore.factory import create_backend, create_storage_client
from unistore.filesystem_client import FilesystemStorageBackend
from unistore.gcs_client import GcsStorageBackend
from unistore.s3_client import S3StorageBackend


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in [
        "OBJECT_STORAGE_TYPE",
        "OBJECT_STORAGE_PAGE_SIZE",
        "S3_ENDPOINT_URL",
        "S3_REGION",
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SESSION_TOKEN",
        "GCS_PROJECT",
        "GOOGLE_APPLICATION_CREDENTIALS",
        "AZURE_STORAGE_CONNECTION_STRING",
        "AZURE_STORAGE_ACCOUNT_NAME",
        "AZURE_STORAGE_ACCOUNT_KEY",
        "FILESYSTEM_STORAGE_ROOT",
    ]:
        monkeypatch.delenv(var, raising=False)


class TestCreateStorageClient:
    def test_defaults_to_s3(self):
        with patch("unistore.s3_client.boto3") as mock_boto3:
            mock_boto3.client.return_value = MagicMock()
            client = create_storage_client()

        assert isinstance(client, ObjectStorageClient)
        assert isinstance(client.backend, S3StorageBackend)

    def test_s3_reads_environment(self, monkeypatch):
        monkeypatch.setenv("S3_REGION", "eu-west-1")
        monkeypatch.setenv("S3_ENDPOINT_URL", "http://localhost:8333")
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "key")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
        monkeypatch.setenv("OBJECT_STORAGE_PAGE_SIZE", "50")

        with patch("unistore.s3_client.boto3") as mock_boto3:
            backend = create_backend("s3")

        kwargs = mock_boto3.client.call_args.kwargs
        assert kwargs["endpoint_url"] == "http://localhost:8333"
        assert kwargs["aws_access_key_id"] == "key"
        assert kwargs["config"].region_name == "eu-west-1"
        assert backend._page_size == 50

    def test_type_from_env_is_case_insensitive(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OBJECT_STORAGE_TYPE", "FileSystem")
        monkeypatch.setenv("FILESYSTEM_STORAGE_ROOT", str(tmp_path / "root"))

        backend = create_backend()

        assert isinstance(backend, FilesystemStorageBackend)
        assert backend.root_path == str(tmp_path / "root")

    def test_argument_overrides_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OBJECT_STORAGE_TYPE", "gcs")
        monkeypatch.setenv("FILESYSTEM_STORAGE_ROOT", str(tmp_path))

        assert isinstance(create_backend("filesystem"), FilesystemStorageBackend)

    def test_gcs(self, monkeypatch):
        monkeypatch.setenv("GCS_PROJECT", "proj")

        with patch("unistore.gcs_client.gcs") as mock_gcs:
            backend = create_backend("gcs")

        assert isinstance(backend, GcsStorageBackend)
        mock_gcs.Client.assert_called_once_with(project="proj")

    def test_azure_connection_string(self, monkeypatch):
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", "UseDevelopmentStorage=true")

        with patch("unistore.azure_client.BlobServiceClient") as mock_cls:
            backend = create_backend("azure")

        assert isinstance(backend, AzureBlobStorageBackend)
        mock_cls.from_connection_string.assert_called_once_with("UseDevelopmentStorage=true")

    def test_azure_without_credentials_raises(self):
        with pytest.raises(ValueError, match="connection_string"):
            create_backend("azure")

    def test_unsupported_type_raises(self):
        with pytest.raises(ValueError, match="Unsupported storage type"):
            create_storage_client("ftp")

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_page_size_raises(self, monkeypatch, value):
        monkeypatch.setenv("OBJECT_STORAGE_PAGE_SIZE", value)

        with pytest.raises(ValueError, match="OBJECT_STORAGE_PAGE_SIZE"):
            create_backend("filesystem")
