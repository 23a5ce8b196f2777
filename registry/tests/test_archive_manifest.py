import io
import tarfile

import pytest

from registry_core.errors import InvalidError
from registry_core.services.archive import read_archive_manifest


def _tarball(files):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for path, content in files.items():
            info = tarfile.TarInfo(path)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def test_reads_name_version_and_full_manifest():
    pubspec = (
        b"name: foo\n"
        b"version: 1.2.3+4\n"
        b"description: A package.\n"
        b"environment:\n"
        b"  sdk: '>=3.0.0 <4.0.0'\n"
        b"dependencies:\n"
        b"  http: ^1.0.0\n"
    )

    parsed = read_archive_manifest(_tarball({"pubspec.yaml": pubspec}))

    assert (parsed.name, parsed.version) == ("foo", "1.2.3+4")
    assert parsed.manifest["environment"] == {"sdk": ">=3.0.0 <4.0.0"}
    assert parsed.manifest["dependencies"] == {"http": "^1.0.0"}


def test_dot_prefixed_members_count_as_root():
    data = _tarball(
        {
            "./example/pubspec.yaml": b"name: foo_example\nversion: 0.0.1\n",
            "./pubspec.yaml": b"name: foo\nversion: 2.0.0\n",
        }
    )
    assert read_archive_manifest(data).name == "foo"


def test_yaml_scalars_are_made_json_safe():
    data = _tarball({"pubspec.yaml": b"name: foo\nversion: 1.0.0\nreleased: 2024-01-02\n"})
    assert read_archive_manifest(data).manifest["released"] == "2024-01-02"


@pytest.mark.parametrize(
    "pubspec",
    [
        b"- just\n- a list\n",
        b"name: foo\nversion: 1.0\n",
        b"name: [broken\n",
        b"name: foo\nversion: ''\n",
        b"\xff\xfe\x00",
    ],
)
def test_bad_manifests(pubspec):
    with pytest.raises(InvalidError):
        read_archive_manifest(_tarball({"pubspec.yaml": pubspec}))


def test_truncated_archive():
    data = _tarball({"pubspec.yaml": b"name: foo\nversion: 1.0.0\n"})
    with pytest.raises(InvalidError):
        read_archive_manifest(data[:20])
