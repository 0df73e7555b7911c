"""
Tests for HTTP method dispatch over a temporary root directory
"""

from __future__ import annotations

import pytest

pytest.importorskip("httpx", reason="httpx is required for TestClient")

from fastapi.testclient import TestClient

from sdweb.main import create_app
from sdweb.models import Config, WebConfig


def make_client(root, **web_options) -> TestClient:
    config = Config(web=WebConfig(root_path=str(root), url_prefix="/files", **web_options))
    return TestClient(create_app(config=config))


@pytest.fixture()
def root(tmp_path):
    """Root directory with docs/readme.txt and a secret outside of it"""

    data = tmp_path / "data"
    (data / "docs").mkdir(parents=True)
    (data / "docs" / "readme.txt").write_bytes(b"hello world!")
    (tmp_path / "secret.txt").write_text("top secret")
    return data


@pytest.fixture()
def client(root):
    return make_client(root)


class TestGet:
    """GET: downloads and listings"""

    def test_download_file(self, client):
        response = client.get("/files/docs/readme.txt")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.content == b"hello world!"
        assert 'filename="readme.txt"' in response.headers["content-disposition"]

    def test_head_file(self, client):
        response = client.head("/files/docs/readme.txt")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["content-length"] == "12"
        assert 'filename="readme.txt"' in response.headers["content-disposition"]

    def test_head_directory_and_missing(self, client):
        assert client.head("/files/docs/").status_code == 200
        assert client.head("/files/docs/missing.txt").status_code == 404

    def test_unknown_type_is_octet_stream(self, client, root):
        (root / "firmware.bin").write_bytes(b"\x00\x01\x02")

        response = client.get("/files/firmware.bin")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/octet-stream"
        assert response.content == b"\x00\x01\x02"

    def test_large_file_round_trips(self, client, root):
        payload = bytes(range(256)) * 100
        (root / "big.dat").write_bytes(payload)

        response = client.get("/files/big.dat")
        assert response.status_code == 200
        assert response.content == payload

    def test_directory_listing(self, client):
        response = client.get("/files/docs")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "Index of /files/docs" in response.text
        assert 'href="/files/docs/readme.txt"' in response.text
        assert '<a href="/files/">Parent directory</a>' in response.text

    def test_root_listing(self, client):
        for url in ("/files", "/files/"):
            response = client.get(url)
            assert response.status_code == 200
            assert 'href="/files/docs/"' in response.text
            assert "Parent directory" not in response.text

    def test_json_listing(self, client):
        response = client.get("/files/docs/", headers={"Accept": "application/json"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["path"] == "/files/docs/"
        assert data["files"] == [{"name": "readme.txt", "is_directory": False, "size": 12}]

    def test_missing_path(self, client):
        response = client.get("/files/docs/missing.txt")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == 404

    def test_file_with_trailing_separator_is_not_found(self, client):
        assert client.get("/files/docs/readme.txt/").status_code == 404

    def test_download_disabled(self, root):
        client = make_client(root, download_enabled=False)

        assert client.get("/files/docs/readme.txt").status_code == 403
        assert client.get("/files/docs/missing.txt").status_code == 403
        assert client.get("/files/docs").status_code == 403

    def test_traversal_is_rejected(self, client):
        response = client.get("/files/docs\\..\\..\\secret.txt")

        assert response.status_code == 400
        assert "top secret" not in response.text

    def test_encoded_traversal_never_escapes(self, client):
        response = client.get("/files/%2e%2e/secret.txt")

        assert response.status_code in (400, 404)
        assert "top secret" not in response.text

    def test_error_body_does_not_leak_root(self, client, root):
        response = client.get("/files/nowhere/file.txt")

        assert response.status_code == 404
        assert str(root) not in response.text


class TestDelete:
    """DELETE: single files only"""

    def test_delete_file(self, client, root):
        response = client.delete("/files/docs/readme.txt")

        assert response.status_code == 204
        assert response.content == b""
        assert not (root / "docs" / "readme.txt").exists()

    def test_delete_directory_is_refused(self, client, root):
        response = client.delete("/files/docs")

        assert response.status_code == 400
        assert (root / "docs").is_dir()
        assert (root / "docs" / "readme.txt").exists()

    def test_delete_root_is_refused(self, client, root):
        assert client.delete("/files/").status_code == 400
        assert root.is_dir()

    def test_delete_missing(self, client):
        assert client.delete("/files/docs/missing.txt").status_code == 404

    def test_delete_disabled(self, root):
        client = make_client(root, deletion_enabled=False)

        assert client.delete("/files/docs/readme.txt").status_code == 403
        assert (root / "docs" / "readme.txt").exists()


class TestPut:
    """PUT: directory creation and rename"""

    def test_create_directory_then_list(self, client, root):
        response = client.put("/files/newdir/")

        assert response.status_code == 201
        assert (root / "newdir").is_dir()

        listing = client.get("/files/newdir/")
        assert listing.status_code == 200
        assert "<tbody>" in listing.text
        assert "<tr><td>" not in listing.text

    def test_create_nested_directory(self, client, root):
        assert client.put("/files/a/b/c/").status_code == 201
        assert (root / "a" / "b" / "c").is_dir()

    def test_create_existing_directory(self, client):
        assert client.put("/files/docs/").status_code == 400

    def test_create_below_file(self, client):
        assert client.put("/files/docs/readme.txt/sub/").status_code == 400

    def test_rename_file(self, client, root):
        response = client.put("/files/docs/readme.txt", headers={"X-New-Name": "notes.txt"})

        assert response.status_code == 200
        assert response.json()["data"]["path"] == "/docs/notes.txt"
        assert not (root / "docs" / "readme.txt").exists()
        assert (root / "docs" / "notes.txt").read_bytes() == b"hello world!"

    def test_rename_percent_encoded_name(self, client, root):
        response = client.put("/files/docs/readme.txt", headers={"X-New-Name": "r%C3%A9sum%C3%A9.txt"})

        assert response.status_code == 200
        assert (root / "docs" / "résumé.txt").exists()

    def test_rename_directory(self, client, root):
        response = client.put("/files/docs", headers={"X-New-Name": "papers"})

        assert response.status_code == 200
        assert (root / "papers" / "readme.txt").exists()

    def test_rename_missing_header(self, client, root):
        assert client.put("/files/docs/readme.txt").status_code == 400
        assert (root / "docs" / "readme.txt").exists()

    def test_rename_invalid_name(self, client, root):
        for name in ("../escape.txt", "a/b.txt", "..", "%2e%2e"):
            response = client.put("/files/docs/readme.txt", headers={"X-New-Name": name})
            assert response.status_code == 400
        assert (root / "docs" / "readme.txt").exists()

    def test_rename_onto_existing(self, client, root):
        (root / "docs" / "other.txt").write_bytes(b"other")

        response = client.put("/files/docs/readme.txt", headers={"X-New-Name": "other.txt"})
        assert response.status_code == 400
        assert (root / "docs" / "other.txt").read_bytes() == b"other"
        assert (root / "docs" / "readme.txt").exists()

    def test_rename_missing_source(self, client):
        response = client.put("/files/docs/missing.txt", headers={"X-New-Name": "x.txt"})
        assert response.status_code == 404


class TestPost:
    """POST: uploads"""

    def test_raw_upload_round_trip(self, client, root):
        payload = bytes(range(256)) * 40

        response = client.post(
            "/files/docs/",
            content=payload,
            headers={"X-File-Name": "blob.bin"},
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data == {"filename": "blob.bin", "size": len(payload), "path": "/docs/blob.bin"}

        download = client.get("/files/docs/blob.bin")
        assert download.status_code == 200
        assert download.content == payload

    def test_multipart_upload(self, client, root):
        response = client.post(
            "/files/docs",
            files={"file": ("photo.png", b"\x89PNG fake", "image/png")},
        )

        assert response.status_code == 201
        assert (root / "docs" / "photo.png").read_bytes() == b"\x89PNG fake"

        download = client.get("/files/docs/photo.png")
        assert download.headers["content-type"] == "image/png"

    def test_multipart_upload_strips_client_path(self, client, root):
        response = client.post(
            "/files/",
            files={"file": ("C:\\Users\\me\\notes.txt", b"notes", "text/plain")},
        )

        assert response.status_code == 201
        assert (root / "notes.txt").read_bytes() == b"notes"

    def test_upload_disabled(self, root):
        client = make_client(root, upload_enabled=False)

        response = client.post("/files/docs/", content=b"x", headers={"X-File-Name": "x.txt"})
        assert response.status_code == 403
        assert not (root / "docs" / "x.txt").exists()

    def test_upload_without_filename(self, client):
        assert client.post("/files/docs/", content=b"data").status_code == 400

    def test_form_without_file_part(self, client):
        response = client.post("/files/docs/", data={"note": "no file here"})
        assert response.status_code == 400

    def test_upload_invalid_filename(self, client):
        response = client.post("/files/docs/", content=b"x", headers={"X-File-Name": ".."})
        assert response.status_code == 400

    def test_upload_to_file_path(self, client):
        response = client.post(
            "/files/docs/readme.txt", content=b"x", headers={"X-File-Name": "x.txt"}
        )
        assert response.status_code == 400

    def test_upload_to_missing_directory(self, client):
        response = client.post("/files/nowhere/", content=b"x", headers={"X-File-Name": "x.txt"})
        assert response.status_code == 404

    def test_upload_existing_file(self, client, root):
        response = client.post(
            "/files/docs/", content=b"replaced", headers={"X-File-Name": "readme.txt"}
        )

        assert response.status_code == 400
        assert (root / "docs" / "readme.txt").read_bytes() == b"hello world!"

    def test_upload_too_large(self, root):
        client = make_client(root, max_upload_size=10)

        response = client.post(
            "/files/docs/", content=b"x" * 20, headers={"X-File-Name": "big.bin"}
        )
        assert response.status_code == 413
        assert not (root / "docs" / "big.bin").exists()


class TestApplication:
    """Routes outside the file tree"""

    def test_unsupported_method(self, client):
        assert client.patch("/files/docs/readme.txt").status_code == 405

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_metrics_count_transfers(self, client):
        client.get("/files/docs/readme.txt")
        client.post("/files/docs/", content=b"abc", headers={"X-File-Name": "abc.txt"})

        metrics = client.get("/metrics").json()
        assert metrics["transfer"]["downloads"] == {"completed": 1, "failed": 0, "bytes": 12}
        assert metrics["transfer"]["uploads"] == {"completed": 1, "failed": 0, "bytes": 3}
        assert metrics["requests"]["by_method"]["POST"] == 1
        assert metrics["responses"]["by_status"]["201"] == 1

    def test_metrics_count_failed_upload(self, root):
        client = make_client(root, max_upload_size=4)

        # No Content-Length check can catch a chunked body, so the limit trips mid-stream
        def body():
            yield b"abc"
            yield b"def"

        response = client.post("/files/docs/", content=body(), headers={"X-File-Name": "big.bin"})
        assert response.status_code == 413

        uploads = client.get("/metrics").json()["transfer"]["uploads"]
        assert uploads["completed"] == 0
        assert uploads["failed"] == 1

    def test_empty_prefix_keeps_service_routes(self, root):
        config = Config(web=WebConfig(root_path=str(root), url_prefix="/"))
        client = TestClient(create_app(config=config))

        assert client.get("/healthz").json()["ok"] is True
        assert client.get("/docs/readme.txt").content == b"hello world!"
