import base64
import logging

import pytest
from botocore.exceptions import NoCredentialsError
from fastapi import HTTPException

from app.services.storage import BucketStorage
from app.services.upload_service import get_content_type

from conftest import client_error

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.mark.parametrize("filename,expected", [
    ("scan.png", "image/png"),
    ("SCAN.PNG", "image/png"),
    ("scan.webp", "image/webp"),
    ("scan.jpg", "image/jpeg"),
    ("scan.bmp", "image/jpeg"),
    ("noext", "image/jpeg"),
])
def test_content_type_from_extension(filename, expected):
    assert get_content_type(filename) == expected


def test_public_url_variants(s3):
    assert BucketStorage(s3, "b", public_base_url="https://cdn.test/b/").public_url("x.png") == "https://cdn.test/b/x.png"
    assert BucketStorage(s3, "b", endpoint_url="https://store.test").public_url("x.png") == "https://store.test/b/x.png"
    assert BucketStorage(s3, "b", region="eu-west-1").public_url("x.png") == "https://b.s3.eu-west-1.amazonaws.com/x.png"
    assert BucketStorage(s3, "b").public_url("x.png") == "https://b.s3.amazonaws.com/x.png"


def test_process_image_mirrors_staged_file(upload_service, s3, http):
    staged = upload_service.uploads_dir / "lesion.png"
    staged.write_bytes(PNG_BYTES)

    result = upload_service.process_image("lesion.png")

    assert result.filename == "lesion.png"
    assert result.image_url == "https://cdn.test/oral_images/lesion.png"
    assert result.file_path == str(staged)
    assert result.size == len(PNG_BYTES)

    assert s3.presigned[0][1]["Key"] == "lesion.png"
    put = http.puts[0]
    assert put["data"] == PNG_BYTES
    assert put["headers"]["Content-Type"] == "image/png"


def test_process_image_missing_file(upload_service):
    with pytest.raises(HTTPException) as exc:
        upload_service.process_image("nope.jpg")
    assert exc.value.status_code == 404


def test_process_image_storage_failure_is_502(upload_service, http):
    (upload_service.uploads_dir / "a.jpg").write_bytes(b"jpeg")
    http.status_code = 500

    with pytest.raises(HTTPException) as exc:
        upload_service.process_image("a.jpg")
    assert exc.value.status_code == 502


def test_save_base64_image(upload_service, http):
    data_uri = "data:image/jpeg;base64," + base64.b64encode(b"overlay-bytes").decode()

    result = upload_service.save_base64_image(data_uri)

    assert result.filename.startswith("seg_")
    assert result.filename.endswith(".jpg")
    assert result.size == len(b"overlay-bytes")
    assert (upload_service.uploads_dir / result.filename).read_bytes() == b"overlay-bytes"
    assert http.puts[0]["headers"]["Content-Type"] == "image/jpeg"
    assert result.image_url == f"https://cdn.test/oral_images/{result.filename}"


def test_save_base64_png_keeps_extension(upload_service, http):
    data_uri = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    result = upload_service.save_base64_image(data_uri)
    assert result.filename.endswith(".png")
    assert http.puts[0]["headers"]["Content-Type"] == "image/png"


@pytest.mark.parametrize("payload", [
    "not a data uri",
    "data:text/plain;base64,aGVsbG8=",
    "data:image/png;base64,@@@",
])
def test_save_base64_rejects_malformed_payload(upload_service, payload):
    with pytest.raises(HTTPException) as exc:
        upload_service.save_base64_image(payload)
    assert exc.value.status_code == 400


def test_upload_then_delete_leaves_nothing(upload_service, s3):
    (upload_service.uploads_dir / "lesion.png").write_bytes(PNG_BYTES)
    upload_service.process_image("lesion.png")

    upload_service.delete_image("lesion.png")

    assert not (upload_service.uploads_dir / "lesion.png").exists()
    assert s3.deleted == [("oral_images", "lesion.png")]


def test_delete_tolerates_storage_failure(upload_service, s3, caplog):
    (upload_service.uploads_dir / "lesion.png").write_bytes(PNG_BYTES)
    s3.delete_error = client_error()

    with caplog.at_level(logging.WARNING):
        upload_service.delete_image("lesion.png")

    assert not (upload_service.uploads_dir / "lesion.png").exists()
    assert "Storage delete warning" in caplog.text


def test_delete_without_local_copy_still_removes_object(upload_service, s3):
    upload_service.delete_image("only-remote.jpg")
    assert s3.deleted == [("oral_images", "only-remote.jpg")]


def test_delete_stays_inside_uploads_dir(upload_service, tmp_path, s3):
    outside = tmp_path / "keep.txt"
    outside.write_text("x")

    upload_service.delete_image("../keep.txt")

    assert outside.exists()
    assert s3.deleted == [("oral_images", "keep.txt")]


def test_presign_credentials_error_is_502(upload_service, s3, http):
    (upload_service.uploads_dir / "a.jpg").write_bytes(b"jpeg")
    s3.presign_error = NoCredentialsError()

    with pytest.raises(HTTPException) as exc:
        upload_service.process_image("a.jpg")
    assert exc.value.status_code == 502
    assert http.puts == []


def test_save_base64_storage_failure_is_502_after_local_write(upload_service, http):
    http.status_code = 403
    data_uri = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()

    with pytest.raises(HTTPException) as exc:
        upload_service.save_base64_image(data_uri)

    assert exc.value.status_code == 502
    staged = list(upload_service.uploads_dir.glob("seg_*.png"))
    assert len(staged) == 1
    assert staged[0].read_bytes() == PNG_BYTES


def test_storage_failure_logs_status_and_key(upload_service, http, caplog):
    (upload_service.uploads_dir / "a.jpg").write_bytes(b"jpeg")
    http.status_code = 500

    with caplog.at_level(logging.ERROR):
        with pytest.raises(HTTPException):
            upload_service.process_image("a.jpg")

    assert "status=500" in caplog.text
    assert "key=a.jpg" in caplog.text
