import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from registry_core.errors import BackendError, InvalidError, NotFoundError
from registry_core.storage.filesystem import FileBlobStore
from registry_core.storage.keys import archive_key, compute_digest
from registry_core.storage.s3 import S3_CONFIG, S3BlobStore

from conftest import BASE_URL

DATA = b"archive payload"
KEY = archive_key("foo", "1.0.0", compute_digest(DATA))


def _s3_client():
    return boto3.client(
        "s3",
        endpoint_url="http://minio.test:9000",
        region_name="us-east-1",
        aws_access_key_id="test-access",
        aws_secret_access_key="test-secret",
        config=S3_CONFIG,
    )


def test_filesystem_put_get_delete(blobs):
    assert not blobs.exists(KEY)
    blobs.put_archive(KEY, DATA)
    assert blobs.exists(KEY)
    assert blobs.get_archive(KEY) == DATA

    blobs.delete(KEY)
    assert not blobs.exists(KEY)
    blobs.delete(KEY)


def test_filesystem_missing_archive_is_not_found(blobs):
    with pytest.raises(NotFoundError):
        blobs.get_archive(KEY)


def test_filesystem_overwrite_leaves_no_temp_files(blobs):
    blobs.put_archive(KEY, b"first")
    blobs.put_archive(KEY, DATA)
    assert blobs.get_archive(KEY) == DATA
    leftovers = [path.name for path in blobs.root.rglob("*") if path.name.startswith(".upload-")]
    assert leftovers == []


@pytest.mark.parametrize("key", ["../outside.tar.gz", "packages/../../outside.tar.gz", "/etc/passwd", ""])
def test_filesystem_rejects_keys_outside_root(blobs, key):
    with pytest.raises(InvalidError):
        blobs.put_archive(key, DATA)


def test_filesystem_download_url_points_at_registry(blobs):
    assert blobs.get_download_url(KEY) == f"{BASE_URL}/packages/foo/versions/1.0.0.tar.gz"


def test_filesystem_list_keys_and_clear(blobs):
    other = archive_key("bar", "2.0.0", compute_digest(b"bar"))
    blobs.put_archive(KEY, DATA)
    blobs.put_archive(other, b"bar")
    (blobs.root / "notes.txt").write_text("not an archive")

    assert sorted(blobs.list_keys()) == sorted([KEY, other])
    assert blobs.clear() == 2
    assert list(blobs.list_keys()) == []
    assert (blobs.root / "notes.txt").exists()


def test_filesystem_list_keys_on_empty_root(tmp_path):
    store = FileBlobStore(tmp_path / "never-created", BASE_URL)
    assert list(store.list_keys()) == []


def test_s3_exists_maps_missing_object_to_false():
    client = _s3_client()
    store = S3BlobStore(client, "archives")
    with Stubber(client) as stub:
        stub.add_client_error("head_object", service_error_code="404", http_status_code=404)
        stub.add_response("head_object", {}, {"Bucket": "archives", "Key": KEY})
        assert store.exists(KEY) is False
        assert store.exists(KEY) is True
        stub.assert_no_pending_responses()


def test_s3_exists_surfaces_other_errors_as_backend():
    client = _s3_client()
    store = S3BlobStore(client, "archives")
    with Stubber(client) as stub:
        stub.add_client_error("head_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(BackendError):
            store.exists(KEY)


def test_filesystem_exists_surfaces_os_errors_as_backend(blobs):
    (blobs.root / "packages").mkdir()
    key = f"packages/{'a' * 300}/1.0.0/{compute_digest(DATA)}.tar.gz"

    with pytest.raises(BackendError):
        blobs.exists(key)
    with pytest.raises(BackendError):
        blobs.get_archive(key)


def test_filesystem_symlink_loop_is_a_backend_error(blobs):
    packages = blobs.root / "packages"
    packages.mkdir()
    (packages / "loop").symlink_to(packages / "loop")
    key = "packages/loop/1.0.0/archive.tar.gz"

    with pytest.raises(BackendError):
        blobs.exists(key)
    with pytest.raises(BackendError):
        blobs.get_archive(key)


def test_filesystem_exists_is_false_below_a_file(blobs):
    blobs.put_archive(KEY, DATA)
    assert blobs.exists(f"{KEY}/nested.tar.gz") is False


def test_s3_get_archive_reads_body_and_maps_no_such_key():
    client = _s3_client()
    store = S3BlobStore(client, "archives", prefix="cache/")
    with Stubber(client) as stub:
        stub.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(DATA), len(DATA))},
            {"Bucket": "archives", "Key": f"cache/{KEY}"},
        )
        stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        assert store.get_archive(KEY) == DATA
        with pytest.raises(NotFoundError):
            store.get_archive(KEY)


def test_s3_put_archive_sets_content_type():
    client = _s3_client()
    store = S3BlobStore(client, "archives")
    with Stubber(client) as stub:
        stub.add_response(
            "put_object",
            {},
            {"Bucket": "archives", "Key": KEY, "Body": DATA, "ContentType": "application/gzip"},
        )
        store.put_archive(KEY, DATA)
        stub.assert_no_pending_responses()


def test_s3_ensure_ready_creates_missing_bucket():
    client = _s3_client()
    store = S3BlobStore(client, "archives")
    with Stubber(client) as stub:
        stub.add_client_error("head_bucket", service_error_code="404", http_status_code=404)
        stub.add_response("create_bucket", {}, {"Bucket": "archives"})
        store.ensure_ready()
        stub.assert_no_pending_responses()


def test_s3_list_keys_follows_continuation_and_strips_prefix():
    client = _s3_client()
    store = S3BlobStore(client, "archives", prefix="cache/")
    second = archive_key("bar", "0.1.0", compute_digest(b"bar"))
    with Stubber(client) as stub:
        stub.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": f"cache/{KEY}"}], "IsTruncated": True, "NextContinuationToken": "page-2"},
        )
        stub.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": f"cache/{second}"}], "IsTruncated": False},
        )
        assert list(store.list_keys()) == [KEY, second]
        stub.assert_no_pending_responses()


def test_s3_clear_deletes_only_under_prefix():
    client = _s3_client()
    store = S3BlobStore(client, "archives", prefix="cache/")
    with Stubber(client) as stub:
        stub.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": f"cache/{KEY}"}], "IsTruncated": False},
        )
        stub.add_response(
            "delete_objects",
            {},
            {"Bucket": "archives", "Delete": {"Objects": [{"Key": f"cache/{KEY}"}], "Quiet": True}},
        )
        assert store.clear() == 1
        stub.assert_no_pending_responses()


def test_s3_download_url_is_presigned():
    store = S3BlobStore(_s3_client(), "archives", signed_url_ttl=600)
    url = store.get_download_url(KEY)
    assert url.startswith(f"http://minio.test:9000/archives/{KEY}?")
    assert "X-Amz-Signature=" in url
    assert "X-Amz-Expires=600" in url


def test_s3_delete_tolerates_missing_object():
    client = _s3_client()
    store = S3BlobStore(client, "archives")
    with Stubber(client) as stub:
        stub.add_client_error("delete_object", service_error_code="NoSuchKey", http_status_code=404)
        store.delete(KEY)
        stub.add_response("delete_object", {}, {"Bucket": "archives", "Key": ANY})
        store.delete(KEY)
