import os
import re
import shutil
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Test directories for isolated testing
TEST_UPLOAD_DIR = Path("test_uploads").absolute()
TEST_TEMP_DIR = TEST_UPLOAD_DIR / ".partial"

# Point the app at the test directories before it is imported
import config
config.UPLOAD_DIR = str(TEST_UPLOAD_DIR)
config.TEMP_DIR = str(TEST_TEMP_DIR)

from main import app, content_disposition


@pytest.fixture
def client():
    """Run the app (including its lifespan) against empty test directories."""
    shutil.rmtree(TEST_UPLOAD_DIR, ignore_errors=True)

    with TestClient(app) as test_client:
        yield test_client

    shutil.rmtree(TEST_UPLOAD_DIR, ignore_errors=True)


def stored_files():
    return sorted(p.name for p in TEST_UPLOAD_DIR.iterdir() if p.is_file())


def upload(client, filename, content):
    return client.post("/upload", files={"file": (filename, content, "application/octet-stream")})


def test_upload_and_download_small_file(client):
    """A 10-byte a.txt comes back byte for byte under its original name."""
    content = b"0123456789"

    response = upload(client, "a.txt", content)
    assert response.status_code == 200
    body = response.json()
    assert re.fullmatch(r"[0-9a-f]{12}", body["id"])
    assert body["filename"] == "a.txt"
    assert body["size"] == 10
    assert body["url"] == f"http://testserver/files/{body['id']}"

    response = client.get(f"/files/{body['id']}")
    assert response.status_code == 200
    assert response.content == content
    assert response.headers["content-disposition"] == 'attachment; filename="a.txt"'
    assert response.headers["content-length"] == "10"
    assert response.headers["content-type"] == "application/octet-stream"


def test_stored_under_id_and_filename(client):
    body = upload(client, "report.pdf", b"%PDF").json()
    assert stored_files() == [f"{body['id']}_report.pdf"]


def test_multi_chunk_round_trip(client):
    content = os.urandom(3 * config.CHUNK_SIZE + 17)

    body = upload(client, "blob.bin", content).json()
    assert body["size"] == len(content)

    response = client.get(f"/files/{body['id']}")
    assert response.content == content


def test_empty_file(client):
    body = upload(client, "empty.txt", b"").json()
    assert body["size"] == 0

    response = client.get(f"/files/{body['id']}")
    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["content-disposition"] == 'attachment; filename="empty.txt"'
    assert response.headers["content-length"] == "0"


def test_filename_with_separator(client):
    """Underscores in the original name survive the round trip."""
    body = upload(client, "my_notes_v2.txt", b"notes").json()
    assert body["filename"] == "my_notes_v2.txt"

    response = client.get(f"/files/{body['id']}")
    assert response.headers["content-disposition"] == 'attachment; filename="my_notes_v2.txt"'


def test_download_unknown_id(client):
    response = client.get("/files/doesnotexist")
    assert response.status_code == 404
    assert "File not found" in response.text


def test_partial_id_is_not_found(client):
    body = upload(client, "a.txt", b"data").json()

    response = client.get(f"/files/{body['id'][:6]}")
    assert response.status_code == 404


def test_invalid_file_id(client):
    response = client.get("/files/not_an_id")
    assert response.status_code == 400
    assert "Invalid file ID format" in response.text

    response = client.get("/files/" + "a" * (config.MAX_ID_LENGTH + 1))
    assert response.status_code == 400


def test_download_without_id(client):
    response = client.get("/files/")
    assert response.status_code == 400
    assert "File ID required" in response.text


def test_upload_too_large(client, monkeypatch):
    """Oversized uploads are rejected and leave nothing behind."""
    monkeypatch.setattr(config, "MAX_FILE_SIZE", 1024)

    response = upload(client, "big.bin", os.urandom(2048))
    assert response.status_code == 413
    assert "too large" in response.text.lower()
    assert stored_files() == []
    assert list(TEST_TEMP_DIR.iterdir()) == []


def test_upload_exactly_at_limit(client, monkeypatch):
    """Multipart framing does not count against the file size limit."""
    monkeypatch.setattr(config, "MAX_FILE_SIZE", 1024)

    response = upload(client, "fit.bin", b"x" * 1024)
    assert response.status_code == 200
    assert response.json()["size"] == 1024


def test_upload_one_byte_over_limit(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_FILE_SIZE", 1024)

    response = upload(client, "big.bin", b"x" * 1025)
    assert response.status_code == 413
    assert stored_files() == []


def test_upload_declared_length_over_limit(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_FILE_SIZE", 1024)

    response = upload(client, "huge.bin", b"x" * (1024 + config.MULTIPART_OVERHEAD + 1))
    assert response.status_code == 413
    assert stored_files() == []


def test_upload_file_field_as_text(client):
    response = client.post("/upload", data={"file": "hello"}, files={"note": ("n.txt", b"n")})
    assert response.status_code == 400
    assert "Failed to read file" in response.text
    assert stored_files() == []


def test_upload_without_file_field(client):
    response = client.post("/upload", files={"document": ("a.txt", b"data")})
    assert response.status_code == 400
    assert "Failed to read file" in response.text
    assert stored_files() == []


def test_upload_wrong_method(client):
    response = client.get("/upload")
    assert response.status_code == 405


def test_files_survive_restart(client):
    body = upload(client, "keep.txt", b"persistent").json()

    # A fresh lifespan rebuilds the index from disk
    with TestClient(app) as restarted:
        response = restarted.get(f"/files/{body['id']}")
        assert response.status_code == 200
        assert response.content == b"persistent"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "file-transfer"}


def test_home_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert 'curl -F "file=@yourfile.pdf" http://testserver/upload' in response.text
    assert "Max file size: 100 MB" in response.text


def test_content_disposition():
    assert content_disposition("a.txt") == 'attachment; filename="a.txt"'
    assert content_disposition("résumé.pdf") == "attachment; filename*=utf-8''r%C3%A9sum%C3%A9.pdf"
    assert content_disposition('say "hi".txt') == "attachment; filename*=utf-8''say%20%22hi%22.txt"


if __name__ == "__main__":
    pytest.main(["-xvs", __file__])
