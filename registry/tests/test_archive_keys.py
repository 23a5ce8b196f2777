import pytest

from registry_core.errors import InvalidError
from registry_core.storage.keys import archive_key, compute_digest, parse_archive_key

DIGEST = compute_digest(b"archive-bytes")


def test_archive_key_layout():
    assert archive_key("foo", "1.2.3", DIGEST) == f"packages/foo/1.2.3/{DIGEST}.tar.gz"


def test_archive_key_is_deterministic_and_content_addressed():
    assert archive_key("foo", "1.0.0", DIGEST) == archive_key("foo", "1.0.0", DIGEST)
    other = compute_digest(b"other-bytes")
    assert archive_key("foo", "1.0.0", DIGEST) != archive_key("foo", "1.0.0", other)


def test_parse_archive_key_recovers_components():
    key = archive_key("foo_bar", "2.0.0-beta.1+build.5", DIGEST)
    assert parse_archive_key(key) == ("foo_bar", "2.0.0-beta.1+build.5", DIGEST)


@pytest.mark.parametrize(
    "name, version, digest",
    [
        ("foo/bar", "1.0.0", DIGEST),
        ("..", "1.0.0", DIGEST),
        ("foo", "../1.0.0", DIGEST),
        ("foo", "1.0.0", "not-a-digest"),
        ("foo", "1.0.0", DIGEST.upper()),
    ],
)
def test_archive_key_rejects_unsafe_components(name, version, digest):
    with pytest.raises(InvalidError):
        archive_key(name, version, digest)


@pytest.mark.parametrize(
    "key",
    [
        "foo/1.0.0/x.tar.gz",
        f"packages/foo/1.0.0/{DIGEST}.zip",
        f"archives/foo/1.0.0/{DIGEST}.tar.gz",
        f"packages/foo/1.0.0/extra/{DIGEST}.tar.gz",
    ],
)
def test_parse_archive_key_rejects_malformed_keys(key):
    with pytest.raises(InvalidError):
        parse_archive_key(key)
