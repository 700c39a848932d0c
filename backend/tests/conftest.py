import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

from docvault.config import Settings
from docvault.database import init_db
from docvault.dependencies import get_services
from docvault.main import app, build_services

BUCKET = "test-docvault"

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 16
PE_BYTES = b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff\x00\x00" + b"\x00" * 48


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_client(aws_credentials):
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def test_settings(tmp_path):
    return Settings(data_dir=tmp_path / "DocVault", s3_bucket=BUCKET)


@pytest.fixture
def test_db(test_settings):
    init_db(test_settings.db_path)
    return test_settings.db_path


@pytest.fixture
def services(test_settings, test_db, s3_client):
    return build_services(test_settings, s3_client=s3_client)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()


def stored_keys(s3_client) -> list[str]:
    response = s3_client.list_objects_v2(Bucket=BUCKET)
    return [obj["Key"] for obj in response.get("Contents", [])]
