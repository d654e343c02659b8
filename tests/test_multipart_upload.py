"""
Integration tests for multipart uploads through the FastAPI application.
"""

from pathlib import Path

from fastapi import Depends, Request
from fastapi.testclient import TestClient

from uploadguard.app.api.deps import file_upload_parser
from uploadguard.app.upload.multipart import decode_field_value, normalize_fields

from helpers import GIF_BYTES, PNG_BYTES, make_app, make_settings, png_of_size, zip_bytes


class TestMultipartUpload:
    """Test suite for the multipart ingestion route."""

    def setup_method(self):
        self.url = "/api/v1/uploads"

    def _client(self, tmp_path, max_file_size=1000):
        self.staging = tmp_path / "staging"
        app = make_app(make_settings(self.staging, max_file_size=max_file_size))

        @app.post("/echo")
        async def echo(request: Request, upload=Depends(file_upload_parser("image/png"))):
            return {
                "body": request.state.body,
                "same_result": getattr(request.state, "file_upload", None) is upload,
            }

        return TestClient(app)

    def test_png_at_max_size_is_staged(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(self.url, files={"file": ("a.png", png_of_size(1000), "image/png")})

        assert response.status_code == 201
        staged = response.json()["data"]["files"]["file"][0]
        assert staged["original_name"] == "a.png"
        assert staged["size"] == 1000
        assert staged["declared_type"] == "image/png"
        assert Path(staged["stored_path"]).parent == self.staging
        assert Path(staged["stored_path"]).read_bytes() == png_of_size(1000)

    def test_file_over_max_size_aborts_stream(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(self.url, files={"file": ("a.png", png_of_size(1001), "image/png")})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "FILE_EXCEEDS_MAX_SIZE"
        assert error["data"]["fileName"] == "a.png"

    def test_declared_type_is_not_trusted(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post("/echo", files={"file": ("a.png", GIF_BYTES, "text/plain")})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_FAILED"
        assert error["data"]["schemaName"] == "fileupload"
        assert error["data"]["errors"][0]["code"] == "UNEXPECTED_FILE_TYPES"
        assert error["data"]["errors"][0]["mimetypes"] == ["image/gif"]

    def test_mislabelled_png_accepted_after_sniffing(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(
            self.url,
            files={"file": ("photo", PNG_BYTES, "application/octet-stream")}
        )

        assert response.status_code == 201
        staged = response.json()["data"]["files"]["file"][0]
        assert staged["sniffed_type"] == "image/png"
        assert staged["mime_type"] == "image/png"

    def test_multiple_files_and_fields(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(
            self.url,
            data={"title": "holiday", "meta": '{"tags": ["a", "b"]}'},
            files=[
                ("images", ("one.png", PNG_BYTES, "image/png")),
                ("images", ("two.png", PNG_BYTES, "image/png")),
            ],
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert [f["original_name"] for f in data["files"]["images"]] == ["one.png", "two.png"]
        assert data["fields"] == {"title": "holiday", "meta": {"tags": ["a", "b"]}}

    def test_fields_merge_into_request_body(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(
            "/echo?x=1",
            data={"count": "3"},
            files={"file": ("a.png", PNG_BYTES, "image/png")},
        )

        assert response.status_code == 200
        assert response.json() == {"body": {"count": 3}, "same_result": True}

    def test_no_files_is_route_decision(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(
            self.url,
            data={"title": "nothing"},
            files={"file": ("", b"", "application/octet-stream")},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "HTTP_ERROR"

    def test_non_multipart_request_skips_ingestion(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post("/echo", json={"a": 1})

        assert response.status_code == 200
        assert response.json() == {"body": {"a": 1}, "same_result": True}

    def test_missing_boundary(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(
            self.url,
            content=b"--x\r\n",
            headers={"content-type": "multipart/form-data"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MULTIPART_PARSE_FAILED"

    def test_truncated_body(self, tmp_path):
        client = self._client(tmp_path)
        body = (
            b"--bound\r\n"
            b'Content-Disposition: form-data; name="file"; filename="a.png"\r\n'
            b"Content-Type: image/png\r\n\r\n" + PNG_BYTES
        )

        response = client.post(
            self.url,
            content=body,
            headers={"content-type": "multipart/form-data; boundary=bound"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MULTIPART_PARSE_FAILED"

    def test_zip_expanded_and_archive_removed(self, tmp_path):
        client = self._client(tmp_path, max_file_size=1024 * 1024)
        archive = zip_bytes({"docs/readme.txt": "hello"})

        response = client.post(
            f"{self.url}/archive",
            files={"bundle": ("bundle.zip", archive, "application/zip")},
        )

        assert response.status_code == 201
        staged = response.json()["data"]["files"]["bundle"][0]
        target = Path(staged["stored_path"])
        assert staged["expanded"] is True
        assert target.name.endswith("_unzip")
        assert (target / "docs" / "readme.txt").read_text() == "hello"
        assert not target.with_name(target.name[: -len("_unzip")]).exists()

    def test_corrupt_zip_reports_extraction_failure(self, tmp_path):
        client = self._client(tmp_path)

        response = client.post(
            f"{self.url}/archive",
            files={"bundle": ("bundle.zip", b"PK\x03\x04garbage", "application/zip")},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "EXTRACTION_FAILED"


class TestFieldDecoding:
    """Test suite for form field normalisation."""

    def test_decode_field_value(self):
        assert decode_field_value('{"a": 1}') == {"a": 1}
        assert decode_field_value("42") == 42
        assert decode_field_value("plain words") == "plain words"

    def test_normalize_fields(self):
        fields = normalize_fields({"one": ["x"], "many": ["1", "two"]})

        assert fields == {"one": "x", "many": [1, "two"]}
