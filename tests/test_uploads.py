import pytest

from core.errors import DeleteFailed, RenameFailed, StorageError, UploadInProgress
from core.models import BatchState, RenamePhase, SaveFile
from services.save_manager.app.uploads import SaveFileManager
from conftest import MIB, make_pending


@pytest.fixture
def manager(store) -> SaveFileManager:
    return SaveFileManager(store)


async def collect(agen):
    return [item async for item in agen]


# --- upload_batch ---

@pytest.mark.asyncio
async def test_failed_file_does_not_stop_the_batch(manager, store, user):
    store.fail_uploads.add(f"{user.id}/two.sav")
    files = [make_pending("one.sav", 10), make_pending("two.sav", 10), make_pending("three.sav", 10)]

    outcomes = await collect(manager.upload_batch(user, files, access_token="token"))

    assert [o.file_name for o in outcomes] == ["one.sav", "two.sav", "three.sav"]
    assert [o.succeeded for o in outcomes] == [True, False, True]
    assert outcomes[1].error == "Network connection lost"
    assert f"{user.id}/one.sav" in store.objects
    assert f"{user.id}/three.sav" in store.objects
    assert f"{user.id}/two.sav" not in store.objects


@pytest.mark.asyncio
async def test_uploads_are_sequential_and_in_input_order(manager, store, user):
    files = [make_pending("b.sav", 5), make_pending("a.sav", 5)]

    await collect(manager.upload_batch(user, files, access_token="token"))

    uploads = [c[1] for c in store.calls if c[0] == "upload_resumable"]
    assert uploads == [f"{user.id}/b.sav", f"{user.id}/a.sav"]


@pytest.mark.asyncio
async def test_labels_attached_as_custom_metadata(manager, store, user):
    files = [make_pending("bg3.sav", 8), make_pending("misc.dat", 8)]

    await collect(manager.upload_batch(user, files, {"bg3.sav": "Baldur's Gate 3"}, access_token="token"))

    assert store.objects[f"{user.id}/bg3.sav"][1] == {"label": "Baldur's Gate 3"}
    assert store.objects[f"{user.id}/misc.dat"][1] == {"label": ""}
    # The list is refreshed after a batch with at least one success
    assert manager.files["bg3.sav"].label == "Baldur's Gate 3"


@pytest.mark.asyncio
async def test_progress_is_monotonic_per_file_and_resets(manager, store, user):
    updates = []
    files = [make_pending("a.sav", 10, b"0123456789"), make_pending("b.sav", 6, b"012345")]

    await collect(manager.upload_batch(user, files, access_token="token", on_progress=updates.append))

    by_file = {}
    for update in updates:
        by_file.setdefault(update.file_name, []).append(update.percent)
    assert list(by_file) == ["a.sav", "b.sav"]
    for percents in by_file.values():
        assert percents[0] == 0.0
        assert percents == sorted(percents)
        assert percents[-1] == 100.0
    assert manager.progress is None
    assert manager.state == BatchState.IDLE


@pytest.mark.asyncio
async def test_out_of_order_progress_report_is_ignored(manager, store, user):
    updates = []

    async def flaky_upload(path, content, *, access_token, content_type, metadata, on_progress):
        on_progress(0, 10)
        on_progress(8, 10)
        on_progress(4, 10)
        on_progress(10, 10)

    store.upload_resumable = flaky_upload
    await collect(manager.upload_batch(user, [make_pending("a.sav", 10)], access_token="t", on_progress=updates.append))

    assert [u.bytes_transferred for u in updates] == [0, 0, 8, 10]


@pytest.mark.asyncio
async def test_second_batch_refused_while_transferring(manager, user):
    agen = manager.upload_batch(user, [make_pending("a.sav", 4)], access_token="t")
    await agen.__anext__()
    assert manager.state == BatchState.TRANSFERRING

    with pytest.raises(UploadInProgress):
        manager.validate([make_pending("b.sav", 4)])
    with pytest.raises(UploadInProgress):
        await manager.upload_batch(user, [make_pending("b.sav", 4)], access_token="t").__anext__()

    await agen.aclose()
    assert manager.state == BatchState.IDLE


@pytest.mark.asyncio
async def test_validate_uses_known_files_snapshot(manager, store, user):
    store.put(f"{user.id}/big.sav", b"")
    manager.files = {"big.sav": SaveFile(name="big.sav", size=49 * MIB)}

    result = manager.validate([make_pending("new.sav", 2 * MIB)])

    assert result.quota_exceeded
    assert manager.state == BatchState.REJECTED


@pytest.mark.asyncio
async def test_no_transfer_when_batch_is_rejected(manager, store, user):
    manager.files = {"big.sav": SaveFile(name="big.sav", size=49 * MIB)}
    result = manager.validate([make_pending("new.sav", 2 * MIB)])

    outcomes = await collect(manager.upload_batch(user, result.accepted, access_token="t"))

    assert outcomes == []
    assert not [c for c in store.calls if c[0] == "upload_resumable"]


# --- rename ---

@pytest.mark.asyncio
async def test_rename_preserves_label_and_removes_source(manager, store, user):
    store.put(f"{user.id}/save1.dat", b"payload", label="Foo")
    await manager.refresh(user)

    renamed = await manager.rename_file(user, "save1.dat", "save2.dat")

    assert renamed.name == "save2.dat"
    assert renamed.label == "Foo"
    assert store.objects[f"{user.id}/save2.dat"][0] == b"payload"
    assert store.objects[f"{user.id}/save2.dat"][1] == {"label": "Foo"}
    assert f"{user.id}/save1.dat" not in store.objects
    assert set(manager.files) == {"save2.dat"}
    assert manager.pending_renames == {}


@pytest.mark.asyncio
async def test_rename_copy_failure_leaves_only_source(manager, store, user):
    store.put(f"{user.id}/save1.dat", b"payload", label="Foo")
    await manager.refresh(user)
    store.fail_simple_uploads.add(f"{user.id}/save2.dat")

    with pytest.raises(RenameFailed, match="upload refused"):
        await manager.rename_file(user, "save1.dat", "save2.dat")

    assert set(store.objects) == {f"{user.id}/save1.dat"}
    assert set(manager.files) == {"save1.dat"}
    assert manager.pending_renames == {}


@pytest.mark.asyncio
async def test_interrupted_rename_is_recovered(manager, store, user):
    store.put(f"{user.id}/save1.dat", b"payload", label="Foo")
    await manager.refresh(user)
    store.fail_removes.add(f"{user.id}/save1.dat")

    with pytest.raises(RenameFailed):
        await manager.rename_file(user, "save1.dat", "save2.dat")

    # Both objects exist and the in-memory list still shows the source
    assert {f"{user.id}/save1.dat", f"{user.id}/save2.dat"} <= set(store.objects)
    assert set(manager.files) == {"save1.dat"}
    assert manager.pending_renames["save1.dat"].phase == RenamePhase.COPIED

    store.fail_removes.clear()
    settled = await manager.recover_renames(user)

    assert [p.new_name for p in settled] == ["save2.dat"]
    assert settled[0].phase == RenamePhase.COMPLETED
    assert f"{user.id}/save1.dat" not in store.objects
    assert set(manager.files) == {"save2.dat"}
    assert manager.pending_renames == {}


@pytest.mark.asyncio
async def test_rename_to_same_name_fails(manager, user):
    with pytest.raises(RenameFailed):
        await manager.rename_file(user, "a.sav", "a.sav")


@pytest.mark.asyncio
async def test_recovery_keeps_entry_when_existence_check_fails(manager, store, user):
    store.put(f"{user.id}/save1.dat", b"payload")
    await manager.refresh(user)
    store.fail_removes.add(f"{user.id}/save1.dat")
    with pytest.raises(RenameFailed):
        await manager.rename_file(user, "save1.dat", "save2.dat")
    store.fail_removes.clear()
    store.fail_exists.add(f"{user.id}/save1.dat")

    with pytest.raises(StorageError):
        await manager.recover_renames(user)

    assert manager.pending_renames["save1.dat"].phase == RenamePhase.COPIED
    assert f"{user.id}/save1.dat" in store.objects


@pytest.mark.asyncio
@pytest.mark.parametrize("target", ["..", ".", "  ", "dir/x.sav"])
async def test_rename_rejects_non_plain_target(manager, store, user, target):
    store.put(f"{user.id}/a.sav", b"1")

    with pytest.raises(RenameFailed):
        await manager.rename_file(user, "a.sav", target)

    assert set(store.objects) == {f"{user.id}/a.sav"}


# --- delete, label, download ---

@pytest.mark.asyncio
async def test_delete_removes_from_list(manager, store, user):
    store.put(f"{user.id}/a.sav", b"1")
    store.put(f"{user.id}/b.sav", b"2")
    await manager.refresh(user)

    await manager.delete_file(user, "a.sav")

    assert set(manager.files) == {"b.sav"}
    assert f"{user.id}/a.sav" not in store.objects


@pytest.mark.asyncio
async def test_delete_failure_keeps_file_listed(manager, store, user):
    store.put(f"{user.id}/a.sav", b"1")
    await manager.refresh(user)
    store.fail_removes.add(f"{user.id}/a.sav")

    with pytest.raises(DeleteFailed, match="remove refused"):
        await manager.delete_file(user, "a.sav")

    assert set(manager.files) == {"a.sav"}


@pytest.mark.asyncio
async def test_delete_missing_object_fails(manager, user):
    with pytest.raises(DeleteFailed, match="not found"):
        await manager.delete_file(user, "ghost.sav")


@pytest.mark.asyncio
async def test_update_label_rewrites_metadata(manager, store, user):
    store.put(f"{user.id}/a.sav", b"data", label="Old")
    await manager.refresh(user)

    updated = await manager.update_label(user, "a.sav", "Elden Ring")

    assert updated.label == "Elden Ring"
    assert store.objects[f"{user.id}/a.sav"] == (b"data", {"label": "Elden Ring"}, "application/octet-stream")


@pytest.mark.asyncio
async def test_download_uses_label_as_file_name(manager, store, user):
    store.put(f"{user.id}/slot1.sav", b"bytes", label="Hollow Knight")
    store.put(f"{user.id}/plain.dat", b"other")
    await manager.refresh(user)

    assert await manager.download(user, "slot1.sav") == ("Hollow Knight.sav", b"bytes")
    assert await manager.download(user, "plain.dat") == ("plain.dat", b"other")


@pytest.mark.asyncio
async def test_download_url_is_signed(manager, store, user):
    store.put(f"{user.id}/slot1.sav", b"bytes")
    url = await manager.download_url(user, "slot1.sav", expires_in=60)
    assert f"{user.id}/slot1.sav" in url
    assert "ttl=60" in url


@pytest.mark.asyncio
async def test_search_matches_label_or_name(manager, store, user):
    store.put(f"{user.id}/slot1.sav", b"1", label="Hollow Knight")
    store.put(f"{user.id}/bg3.sav", b"2", label="Baldur's Gate 3")
    await manager.refresh(user)

    assert [f.name for f in manager.search("hollow")] == ["slot1.sav"]
    assert [f.name for f in manager.search("BG3")] == ["bg3.sav"]
    assert len(manager.search("")) == 2
