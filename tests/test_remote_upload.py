"""
Integration tests for URL uploads, with the remote host served by
httpx.MockTransport.
"""

from pathlib import Path

import httpx
from fastapi import Depends
from fastapi.testclient import TestClient

from uploadguard.app.api.deps import url_upload_parser
from uploadguard.app.models.domain.upload import ZIP_TYPES
from uploadguard.app.upload.remote import parse_content_length, parse_content_type

from helpers import GIF_BYTES, PNG_BYTES, make_app, make_settings, zip_bytes


class TestRemoteUpload:
    """Test suite for the URL ingestion route."""

    def setup_method(self):
        self.url = "/api/v1/uploads/url"
        self.requests = []
        self.served = []

    def _client(self, tmp_path, handler, max_file_size=1000):
        self.staging = tmp_path / "staging"

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            response = handler(request)
            self.served.append(response)
            return response

        app = make_app(
            make_settings(self.staging, max_file_size=max_file_size),
            transport=httpx.MockTransport(recording_handler),
        )

        @app.post("/fetch-archive")
        async def fetch_archive(upload=Depends(url_upload_parser(ZIP_TYPES, expand_archives=True))):
            return upload.to_dict()

        return TestClient(app)

    def test_remote_png_is_staged(self, tmp_path):
        client = self._client(
            tmp_path,
            lambda request: httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"}),
        )

        response = client.post(self.url, json={"url": "https://files.example/images/cat.png"})

        assert response.status_code == 201
        staged = response.json()["data"]["files"]["file"][0]
        assert staged["field_name"] == "file"
        assert staged["original_name"] == "cat.png"
        assert staged["declared_type"] == "image/png"
        assert staged["size"] == len(PNG_BYTES)
        assert staged["stored_path"].endswith(".png")
        assert Path(staged["stored_path"]).read_bytes() == PNG_BYTES
        assert str(self.requests[0].url) == "https://files.example/images/cat.png"

    def test_remote_404_stages_nothing(self, tmp_path):
        client = self._client(tmp_path, lambda request: httpx.Response(404))

        response = client.post(self.url, json={"url": "https://files.example/missing.png"})

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "REMOTE_NOT_FOUND"
        assert list(self.staging.iterdir()) == []

    def test_remote_server_error(self, tmp_path):
        client = self._client(tmp_path, lambda request: httpx.Response(500))

        response = client.post(self.url, json={"url": "https://files.example/broken.png"})

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == "REMOTE_FETCH_FAILED"
        assert error["data"]["upstreamStatus"] == 500

    def test_transport_failure(self, tmp_path):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = self._client(tmp_path, unreachable)

        response = client.post(self.url, json={"url": "https://files.example/a.png"})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "REMOTE_FETCH_FAILED"

    def test_remote_file_validated_by_content(self, tmp_path):
        client = self._client(
            tmp_path,
            lambda request: httpx.Response(
                200, content=GIF_BYTES, headers={"content-type": "application/octet-stream"}
            ),
        )

        response = client.post(self.url, json={"url": "https://files.example/a.png"})

        assert response.status_code == 201
        assert response.json()["data"]["files"]["file"][0]["sniffed_type"] == "image/gif"

    def test_declared_oversize_response_is_cut_off(self, tmp_path):
        client = self._client(
            tmp_path,
            lambda request: httpx.Response(200, content=PNG_BYTES * 20, headers={"content-type": "image/png"}),
        )

        response = client.post(self.url, json={"url": "https://files.example/large.png"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "FILE_EXCEEDS_MAX_SIZE"
        assert error["data"]["fileName"] == "large.png"
        assert list(self.staging.iterdir()) == []

    def test_chunked_response_over_max_size_is_cut_off(self, tmp_path):
        async def chunks():
            yield PNG_BYTES
            for _ in range(1000):
                yield b"\x00" * 64

        client = self._client(
            tmp_path,
            lambda request: httpx.Response(200, content=chunks(), headers={"content-type": "image/png"}),
        )

        response = client.post(self.url, json={"url": "https://files.example/stream.png"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "FILE_EXCEEDS_MAX_SIZE"
        assert "content-length" not in self.served[0].headers
        assert list(self.staging.iterdir()) == []

    def test_chunked_response_size_is_bytes_written(self, tmp_path):
        async def chunks():
            yield PNG_BYTES[:32]
            yield PNG_BYTES[32:]

        client = self._client(
            tmp_path,
            lambda request: httpx.Response(200, content=chunks(), headers={"content-type": "image/png"}),
        )

        response = client.post(self.url, json={"url": "https://files.example/small.png"})

        assert response.status_code == 201
        staged = response.json()["data"]["files"]["file"][0]
        assert staged["size"] == len(PNG_BYTES)
        assert Path(staged["stored_path"]).read_bytes() == PNG_BYTES

    def test_remote_zip_expanded_when_requested(self, tmp_path):
        archive = zip_bytes({"docs/readme.txt": "hello"})
        client = self._client(
            tmp_path,
            lambda request: httpx.Response(200, content=archive, headers={"content-type": "application/zip"}),
        )

        response = client.post("/fetch-archive", json={"url": "https://files.example/bundle.zip"})

        assert response.status_code == 200
        staged = response.json()["files"]["file"][0]
        target = Path(staged["stored_path"])
        assert staged["expanded"] is True
        assert staged["sniffed_type"] == "application/zip"
        assert target.name.endswith(".zip_unzip")
        assert (target / "docs" / "readme.txt").read_text() == "hello"
        assert not target.with_name(target.name[: -len("_unzip")]).exists()
        assert [p.name for p in self.staging.iterdir()] == [target.name]

    def test_missing_content_type_uses_bin_suffix(self, tmp_path):
        client = self._client(tmp_path, lambda request: httpx.Response(200, content=PNG_BYTES))

        response = client.post(self.url, json={"url": "https://files.example/download"})

        assert response.status_code == 201
        staged = response.json()["data"]["files"]["file"][0]
        assert staged["declared_type"] is None
        assert staged["stored_path"].endswith(".bin")
        assert staged["sniffed_type"] == "image/png"

    def test_body_without_url_is_route_decision(self, tmp_path):
        client = self._client(tmp_path, lambda request: httpx.Response(200))

        response = client.post(self.url, json={"name": "no url here"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "HTTP_ERROR"
        assert self.requests == []


class TestRemoteHeaderParsing:
    """Test suite for remote response header helpers."""

    def test_parse_content_type(self):
        assert parse_content_type("image/png") == ("image/png", "png")
        assert parse_content_type("Image/SVG+XML; charset=utf-8") == ("image/svg+xml", "svg+xml")
        assert parse_content_type(None) == (None, "bin")
        assert parse_content_type("") == (None, "bin")

    def test_parse_content_length(self):
        assert parse_content_length("1024") == 1024
        assert parse_content_length(None) == 0
        assert parse_content_length("lots") == 0
