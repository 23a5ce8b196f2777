import asyncio
import io
import json
import tarfile
import threading

import httpx
import pytest

from registry_core.auth.tokens import Principal
from registry_core.errors import (
    ArchiveTooLargeError,
    ConflictError,
    ForbiddenError,
    InvalidError,
    NotFoundError,
)
from registry_core.services.uploads import UploadSessionManager, UploadState, session_state
from registry_core.services.webhooks import WebhookDispatcher

from conftest import BASE_URL


def _principal(user, *scopes):
    return Principal(user_id=user.id, scopes=frozenset(scopes))


async def _publish(uploads, principal, data):
    ticket = await uploads.initiate(principal)
    await uploads.upload(principal, ticket.session_id, data)
    return await uploads.finalize(principal, ticket.session_id)


@pytest.mark.asyncio
async def test_full_publish_flow(uploads, store, blobs, receiver, dispatcher, user, make_archive):
    store.create_webhook(url="https://hooks.example.test/publish", events=["package.published"])
    principal = _principal(user, "publish:all")
    data = make_archive("foo", "1.0.0")

    ticket = await uploads.initiate(principal)
    assert ticket.to_dict() == {"url": f"{BASE_URL}/api/packages/versions/upload/{ticket.session_id}", "fields": {}}

    finalize_url = await uploads.upload(principal, ticket.session_id, data)
    assert finalize_url == f"{BASE_URL}/api/packages/versions/finalize/{ticket.session_id}"
    staged = store.get_upload_session(ticket.session_id)
    assert session_state(staged, store.now()) is UploadState.AWAITING_FINALIZE

    result = await uploads.finalize(principal, ticket.session_id)
    await dispatcher.drain()

    assert result.created
    assert result.to_dict() == {"success": {"message": "Successfully published foo 1.0.0"}}
    version = store.get_package_version("foo", "1.0.0")
    assert version.archive_key == result.archive_key
    assert version.manifest["name"] == "foo"
    assert blobs.get_archive(result.archive_key) == data
    assert store.get_package("foo").owner_id == user.id
    assert session_state(store.get_upload_session(ticket.session_id), store.now()) is UploadState.FINALIZED

    assert len(receiver.requests) == 1
    body = json.loads(receiver.requests[0].content)
    assert body["event"] == "package.published"
    assert body["data"] == {"package": "foo", "version": "1.0.0", "sha256": result.archive_sha256, "userId": user.id}


@pytest.mark.asyncio
async def test_scope_for_another_package_writes_nothing(uploads, store, blobs, user, make_archive):
    principal = _principal(user, "publish:pkg:foo")
    ticket = await uploads.initiate(principal)
    await uploads.upload(principal, ticket.session_id, make_archive("bar", "1.0.0"))

    with pytest.raises(ForbiddenError):
        await uploads.finalize(principal, ticket.session_id)

    assert store.get_package("bar") is None
    assert list(blobs.list_keys()) == []
    assert not store.get_upload_session(ticket.session_id).completed


@pytest.mark.asyncio
async def test_package_scope_allows_its_own_package(uploads, store, user, make_archive):
    result = await _publish(uploads, _principal(user, "publish:pkg:foo"), make_archive("foo", "1.0.0"))
    assert result.created
    assert store.version_exists("foo", "1.0.0")


@pytest.mark.asyncio
async def test_double_finalize_conflicts_and_notifies_once(uploads, store, receiver, dispatcher, user, make_archive):
    store.create_webhook(url="https://hooks.example.test/all", events=["*"])
    principal = _principal(user, "publish:all")
    ticket = await uploads.initiate(principal)
    await uploads.upload(principal, ticket.session_id, make_archive("foo", "1.0.0"))

    await uploads.finalize(principal, ticket.session_id)
    with pytest.raises(ConflictError):
        await uploads.finalize(principal, ticket.session_id)
    with pytest.raises(ConflictError):
        await uploads.upload(principal, ticket.session_id, make_archive("foo", "1.0.1"))

    await dispatcher.drain()
    assert len(receiver.requests) == 1
    assert len(store.get_package_versions("foo")) == 1


@pytest.mark.asyncio
async def test_expired_session_is_not_found(uploads, clock, user, make_archive):
    principal = _principal(user, "publish:all")
    ticket = await uploads.initiate(principal)
    clock.advance(hours=2)

    with pytest.raises(NotFoundError):
        await uploads.upload(principal, ticket.session_id, make_archive())
    with pytest.raises(NotFoundError):
        await uploads.finalize(principal, ticket.session_id)


@pytest.mark.asyncio
async def test_session_expiring_between_upload_and_finalize(uploads, store, blobs, clock, user, make_archive):
    principal = _principal(user, "publish:all")
    ticket = await uploads.initiate(principal)
    await uploads.upload(principal, ticket.session_id, make_archive())
    clock.advance(hours=2)

    with pytest.raises(NotFoundError):
        await uploads.finalize(principal, ticket.session_id)
    assert store.get_package("foo") is None


@pytest.mark.asyncio
async def test_unknown_session(uploads, user, make_archive):
    with pytest.raises(NotFoundError):
        await uploads.upload(_principal(user, "publish:all"), "does-not-exist", make_archive())


@pytest.mark.asyncio
async def test_session_belongs_to_its_creator(uploads, user, other_user, make_archive):
    ticket = await uploads.initiate(_principal(user, "publish:all"))

    with pytest.raises(ForbiddenError):
        await uploads.upload(_principal(other_user, "publish:all"), ticket.session_id, make_archive())


@pytest.mark.asyncio
async def test_initiate_requires_a_publish_scope(uploads, user):
    with pytest.raises(ForbiddenError):
        await uploads.initiate(_principal(user, "read:all"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        b"this is not a tarball",
        b"",
    ],
)
async def test_unreadable_uploads_are_invalid(uploads, user, payload):
    principal = _principal(user, "publish:all")
    ticket = await uploads.initiate(principal)
    with pytest.raises(InvalidError):
        await uploads.upload(principal, ticket.session_id, payload)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "pubspec",
    [
        {"version": "1.0.0"},
        {"name": "foo"},
        {"name": "Not-Valid", "version": "1.0.0"},
        {"name": "foo", "version": "one"},
    ],
)
async def test_manifest_must_name_a_valid_version(uploads, user, make_archive, pubspec):
    principal = _principal(user, "publish:all")
    ticket = await uploads.initiate(principal)
    with pytest.raises(InvalidError):
        await uploads.upload(principal, ticket.session_id, make_archive(pubspec=pubspec))


@pytest.mark.asyncio
async def test_archive_without_manifest_is_invalid(uploads, user):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        content = b"void main() {}\n"
        info = tarfile.TarInfo("lib/main.dart")
        info.size = len(content)
        archive.addfile(info, io.BytesIO(content))

    principal = _principal(user, "publish:all")
    ticket = await uploads.initiate(principal)
    with pytest.raises(InvalidError):
        await uploads.upload(principal, ticket.session_id, buffer.getvalue())


@pytest.mark.asyncio
async def test_shallowest_manifest_wins(uploads, store, user, make_archive):
    example = b"name: foo_example\nversion: 0.0.1\n"
    data = make_archive("foo", "1.2.0", extra={"example/pubspec.yaml": example})

    result = await _publish(uploads, _principal(user, "publish:all"), data)

    assert (result.package_name, result.version) == ("foo", "1.2.0")
    assert store.get_package("foo_example") is None


@pytest.mark.asyncio
async def test_oversized_archive_is_rejected(store, blobs, dispatcher, clock, user, make_archive):
    manager = UploadSessionManager(store, blobs, dispatcher, base_url=BASE_URL, clock=clock, max_upload_size=64)
    principal = _principal(user, "publish:all")
    ticket = await manager.initiate(principal)

    with pytest.raises(ArchiveTooLargeError) as excinfo:
        await manager.upload(principal, ticket.session_id, make_archive())
    assert excinfo.value.status_code == 413


@pytest.mark.asyncio
async def test_finalize_without_upload(uploads, user):
    principal = _principal(user, "publish:all")
    ticket = await uploads.initiate(principal)
    with pytest.raises(InvalidError):
        await uploads.finalize(principal, ticket.session_id)


@pytest.mark.asyncio
async def test_identical_republish_is_a_noop(uploads, store, receiver, dispatcher, user, make_archive):
    store.create_webhook(url="https://hooks.example.test/all", events=["*"])
    principal = _principal(user, "publish:all")
    data = make_archive("foo", "1.0.0")

    first = await _publish(uploads, principal, data)
    second = await _publish(uploads, principal, data)
    await dispatcher.drain()

    assert first.created
    assert not second.created
    assert second.archive_key == first.archive_key
    assert len(store.get_package_versions("foo")) == 1
    assert len(receiver.requests) == 1


@pytest.mark.asyncio
async def test_changed_content_for_existing_version_conflicts(uploads, store, blobs, user, make_archive):
    principal = _principal(user, "publish:all")
    first = await _publish(uploads, principal, make_archive("foo", "1.0.0"))

    with pytest.raises(ConflictError):
        await _publish(uploads, principal, make_archive("foo", "1.0.0", extra={"README.md": b"changed"}))

    assert list(blobs.list_keys()) == [first.archive_key]
    assert store.get_package_version("foo", "1.0.0").archive_sha256 == first.archive_sha256


@pytest.mark.asyncio
async def test_only_owner_or_admin_publishes_new_versions(uploads, store, user, other_user, make_archive):
    await _publish(uploads, _principal(user, "publish:all"), make_archive("foo", "1.0.0"))

    with pytest.raises(ForbiddenError):
        await _publish(uploads, _principal(other_user, "publish:all"), make_archive("foo", "1.1.0"))

    result = await _publish(uploads, _principal(other_user, "admin"), make_archive("foo", "1.1.0"))
    assert result.created
    assert store.get_package("foo").owner_id == user.id


@pytest.mark.asyncio
async def test_upstream_mirror_cannot_be_published(uploads, packages, user, make_archive):
    packages.cache_upstream_version("foo", "1.0.0", {"name": "foo", "version": "1.0.0"}, make_archive("foo", "1.0.0"))

    with pytest.raises(ForbiddenError):
        await _publish(uploads, _principal(user, "admin"), make_archive("foo", "2.0.0"))


@pytest.mark.asyncio
async def test_sweep_reclaims_sessions(uploads, store, clock, user, make_archive):
    principal = _principal(user, "publish:all")
    await _publish(uploads, principal, make_archive())
    await uploads.initiate(principal)

    clock.advance(hours=2)
    first = uploads.sweep()
    assert (first.expired, first.pruned) == (1, 0)

    clock.advance(days=2)
    second = uploads.sweep()
    assert (second.expired, second.pruned) == (0, 1)


@pytest.mark.asyncio
async def test_finalize_does_not_wait_for_webhook_delivery(store, blobs, clock, user, make_archive):
    release = asyncio.Event()
    received = []

    async def slow_receiver(request):
        received.append(request)
        await release.wait()
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(slow_receiver))
    dispatcher = WebhookDispatcher(store, client=client, clock=clock)
    uploads = UploadSessionManager(store, blobs, dispatcher, base_url=BASE_URL, clock=clock)
    webhook = store.create_webhook(url="https://hooks.example.test/slow", events=["*"])

    result = await asyncio.wait_for(
        _publish(uploads, _principal(user, "publish:all"), make_archive("foo", "1.0.0")),
        timeout=5,
    )

    assert result.created
    assert store.list_webhook_deliveries(webhook.id) == []

    release.set()
    await dispatcher.drain()
    await client.aclose()
    assert len(received) == 1
    assert [delivery.success for delivery in store.list_webhook_deliveries(webhook.id)] == [True]


def test_concurrent_finalize_of_the_same_version_creates_one_row(uploads, store, user, make_archive):
    principal = _principal(user, "publish:all")
    data = make_archive("foo", "1.0.0")

    async def stage():
        ticket = await uploads.initiate(principal)
        await uploads.upload(principal, ticket.session_id, data)
        return ticket.session_id

    session_ids = [asyncio.run(stage()), asyncio.run(stage())]
    barrier = threading.Barrier(len(session_ids))
    results = []
    errors = []

    def finalize(session_id):
        barrier.wait()
        try:
            results.append(asyncio.run(uploads.finalize(principal, session_id)))
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=finalize, args=(session_id,)) for session_id in session_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert sorted(result.created for result in results) == [False, True]
    assert len(store.get_package_versions("foo")) == 1
    assert all(store.get_upload_session(session_id).completed for session_id in session_ids)
