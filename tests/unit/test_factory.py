# SPDX-License-Identifier: MIT
"""Unit tests for connection resolution."""

import sys

import pytest
from pydantic import ValidationError

from kura.storage.factory import Connection, get_filesystem, get_filesystem_for_connection
from kura.storage.gcs import GCSFilesystem
from kura.storage.local import LocalFilesystem
from kura.storage.s3 import S3Filesystem
from kura.storage.sftp import SFTPFilesystem

# ------------------------------------------------------------------
# Connection model
# ------------------------------------------------------------------


@pytest.mark.unit
def test_connection_type_is_normalised():
    assert Connection(type=" S3 ").type == "s3"


@pytest.mark.unit
def test_connection_rejects_unknown_type():
    with pytest.raises(ValidationError):
        Connection(type="ftp")


@pytest.mark.unit
def test_connection_is_frozen():
    conn = Connection(type="folder")
    with pytest.raises(ValidationError):
        conn.url = "elsewhere"


# ------------------------------------------------------------------
# get_filesystem_for_connection
# ------------------------------------------------------------------


@pytest.mark.unit
def test_folder_connection(tmp_path):
    fs = get_filesystem_for_connection(Connection(type="folder", properties={"path": str(tmp_path)}))

    assert isinstance(fs, LocalFilesystem)
    assert fs.root == tmp_path.resolve()


@pytest.mark.unit
def test_s3_connection(mocker):
    mock_client = mocker.patch("kura.storage.s3.boto3.client")
    conn = Connection(
        type="s3",
        url="http://minio:9000",
        username="AK",
        password="SK",
        properties={"bucket": "artifacts", "region": "us-east-2", "usePathStyle": "true"},
    )

    fs = get_filesystem_for_connection(conn)

    assert isinstance(fs, S3Filesystem)
    assert fs.bucket == "artifacts"
    kwargs = mock_client.call_args.kwargs
    assert kwargs["endpoint_url"] == "http://minio:9000"
    assert kwargs["region_name"] == "us-east-2"
    assert kwargs["aws_access_key_id"] == "AK"
    assert kwargs["config"].s3 == {"addressing_style": "path"}


@pytest.mark.unit
def test_s3_connection_requires_bucket():
    with pytest.raises(ValueError, match="bucket"):
        get_filesystem_for_connection(Connection(type="s3"))


@pytest.mark.unit
def test_s3_connection_missing_extra(monkeypatch):
    monkeypatch.delitem(sys.modules, "kura.storage.s3", raising=False)
    monkeypatch.setitem(sys.modules, "boto3", None)
    with pytest.raises(RuntimeError, match=r"kura\[s3\]"):
        get_filesystem_for_connection(Connection(type="s3", properties={"bucket": "b"}))


@pytest.mark.unit
def test_gcs_connection():
    fs = get_filesystem_for_connection(
        Connection(type="gcs", url="http://fake-gcs:4443", password="tok", properties={"bucket": "media"})
    )

    assert isinstance(fs, GCSFilesystem)
    assert fs.bucket == "media"
    assert fs._endpoint == "http://fake-gcs:4443"
    assert fs._token == "tok"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("url", "properties", "expected_host", "expected_port"),
    [
        ("sftp://files.example.com", {"port": "2222"}, "files.example.com", 2222),
        ("sftp://files.example.com:2200", {}, "files.example.com", 2200),
        ("files.example.com", {}, "files.example.com", 22),
    ],
)
def test_sftp_connection(mocker, url, properties, expected_host, expected_port):
    connect = mocker.patch("kura.storage.sftp.connect_sftp", return_value=mocker.sentinel.fs)

    fs = get_filesystem_for_connection(
        Connection(type="sftp", url=url, username="u", password="p", properties=properties)
    )

    assert fs is mocker.sentinel.fs
    connect.assert_called_once_with(expected_host, expected_port, "u", "p")


@pytest.mark.unit
def test_sftp_connection_requires_host():
    with pytest.raises(ValueError, match="host"):
        get_filesystem_for_connection(Connection(type="sftp"))


@pytest.mark.unit
def test_smb_connection(mocker):
    connect = mocker.patch("kura.storage.smb.connect_smb", return_value=mocker.sentinel.fs)

    fs = get_filesystem_for_connection(
        Connection(type="smb", url="smb://nas.local", username="u", password="p", properties={"share": "media"})
    )

    assert fs is mocker.sentinel.fs
    connect.assert_called_once_with("nas.local", "media", port=445, username="u", password="p")


@pytest.mark.unit
def test_smb_connection_requires_share():
    with pytest.raises(ValueError, match="share"):
        get_filesystem_for_connection(Connection(type="smb", url="nas.local"))


# ------------------------------------------------------------------
# get_filesystem (environment)
# ------------------------------------------------------------------


@pytest.mark.unit
def test_get_filesystem_defaults_to_folder(monkeypatch, tmp_path):
    monkeypatch.delenv("KURA_CONNECTION_TYPE", raising=False)
    monkeypatch.setenv("KURA_CONNECTION_PROPERTIES", f'{{"path": "{tmp_path}"}}')

    fs = get_filesystem()

    assert isinstance(fs, LocalFilesystem)
    assert fs.root == tmp_path.resolve()


@pytest.mark.unit
def test_get_filesystem_is_cached(monkeypatch, tmp_path):
    monkeypatch.setenv("KURA_CONNECTION_TYPE", "folder")
    monkeypatch.setenv("KURA_CONNECTION_URL", str(tmp_path))

    assert get_filesystem() is get_filesystem()


@pytest.mark.unit
def test_get_filesystem_registers_cleanup_for_remote(monkeypatch, mocker):
    monkeypatch.setenv("KURA_CONNECTION_TYPE", "gcs")
    monkeypatch.setenv("KURA_CONNECTION_PROPERTIES", '{"bucket": "media"}')
    register = mocker.patch("kura.storage.factory.atexit.register")

    fs = get_filesystem()

    assert isinstance(fs, GCSFilesystem)
    register.assert_called_once()
