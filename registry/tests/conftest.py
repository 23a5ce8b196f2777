import io
import tarfile
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import yaml

from registry_core.auth.tokens import Principal
from registry_core.db.migrations import MigrationRunner
from registry_core.db.session import Database
from registry_core.services.packages import PackageService
from registry_core.services.uploads import UploadSessionManager
from registry_core.services.webhooks import WebhookDispatcher
from registry_core.storage.filesystem import FileBlobStore
from registry_core.store import MetadataStore

BASE_URL = "https://registry.example.test"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class WebhookReceiver:
    """httpx.MockTransport handler that records requests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"ok": self.status_code < 300})


def build_archive(
    name: str = "foo",
    version: str = "1.0.0",
    *,
    pubspec: dict | None = None,
    extra: dict[str, bytes] | None = None,
    root: str = "",
) -> bytes:
    manifest = pubspec if pubspec is not None else {"name": name, "version": version}
    files = {f"{root}pubspec.yaml": yaml.safe_dump(manifest).encode("utf-8")}
    files[f"{root}lib/{name}.dart"] = f"// {name} {version}\n".encode("utf-8")
    files.update(extra or {})
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for path, content in files.items():
            info = tarfile.TarInfo(path)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def principal_for(user_id: str, *scopes: str) -> Principal:
    return Principal(user_id=user_id, scopes=frozenset(scopes))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'registry.db'}", retry_attempts=1)
    MigrationRunner(db).run()
    yield db
    db.dispose()


@pytest.fixture
def store(database, clock):
    return MetadataStore(database, clock=clock)


@pytest.fixture
def blobs(tmp_path):
    store = FileBlobStore(tmp_path / "storage", BASE_URL)
    store.ensure_ready()
    return store


@pytest.fixture
def cache_blobs(tmp_path):
    store = FileBlobStore(tmp_path / "cache", BASE_URL)
    store.ensure_ready()
    return store


@pytest.fixture
def receiver():
    return WebhookReceiver()


@pytest.fixture
def http_client(receiver):
    return httpx.AsyncClient(transport=httpx.MockTransport(receiver))


@pytest.fixture
def dispatcher(store, http_client, clock):
    return WebhookDispatcher(store, client=http_client, clock=clock, max_failures=3)


@pytest.fixture
def uploads(store, blobs, dispatcher, clock):
    return UploadSessionManager(store, blobs, dispatcher, base_url=BASE_URL, clock=clock)


@pytest.fixture
def packages(store, blobs, cache_blobs, dispatcher):
    return PackageService(store, blobs, cache_blobs, dispatcher, base_url=BASE_URL)


@pytest.fixture
def user(store):
    return store.create_user(email="dev@example.test", password_hash="hashed", name="Dev")


@pytest.fixture
def other_user(store):
    return store.create_user(email="other@example.test", password_hash="hashed", name="Other")


@pytest.fixture
def make_archive():
    return build_archive
