from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from fashionmuse import archive as archive_module
from fashionmuse.errors import MissingReference


def save_images(archive, user_id, count, prefix="IMG"):
    return [archive.save_image(user_id, f"data:image/png;base64,{prefix}{i}", "image/png") for i in range(count)]

# --- Images ---

def test_save_image_is_plain_insert(archive, alice):
    first = archive.save_image(alice.id, "data:image/jpeg;base64,SAME", is_original=True)
    second = archive.save_image(alice.id, "data:image/jpeg;base64,SAME")
    assert first.id != second.id
    assert first.is_original is True
    assert second.is_original is False
    assert archive.get_image(first.id).image_data == "data:image/jpeg;base64,SAME"
    assert archive.get_image("img_missing") is None
    assert [image.id for image in archive.list_user_images(alice.id)] == [second.id, first.id]

def test_save_image_for_unknown_user_fails(archive):
    with pytest.raises(MissingReference):
        archive.save_image("user_missing", "data:image/jpeg;base64,AAAA")

def test_delete_image(archive, alice):
    image = archive.save_image(alice.id, "data:image/jpeg;base64,AAAA")
    assert archive.delete_image(image.id) is True
    assert archive.delete_image(image.id) is False
    assert archive.list_user_images(alice.id) == []

# --- History ---

def test_history_preserves_image_order_and_thumbnail(archive, alice):
    images = save_images(archive, alice.id, 3)
    archive.record_history(alice.id, "3/7/2026", "4:05:09 PM", [image.id for image in images])

    entries = archive.load_history(alice.id)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.images == [image.image_data for image in images]
    assert entry.thumbnail == images[0].image_data
    assert entry.count == 3
    assert (entry.date, entry.time) == ("3/7/2026", "4:05:09 PM")

def test_history_order_follows_given_ids_not_insertion(archive, alice):
    images = save_images(archive, alice.id, 3)
    reordered = [images[2], images[0], images[1]]
    entry = archive.record_history(alice.id, "d", "t", [image.id for image in reordered])
    assert entry.images == [image.image_data for image in reordered]
    assert entry.thumbnail == images[2].image_data

def test_record_history_requires_images(archive, alice):
    with pytest.raises(ValueError):
        archive.record_history(alice.id, "d", "t", [])

def test_record_history_with_unknown_image_writes_nothing(archive, alice):
    images = save_images(archive, alice.id, 1)
    with pytest.raises(MissingReference):
        archive.record_history(alice.id, "d", "t", [images[0].id, "img_missing"])
    assert archive.load_history(alice.id) == []

def test_load_history_newest_first_and_per_user(archive, alice, auth):
    bob = auth.sign_up("Bob", "bob@example.com", "hunter22")
    older = archive.record_history(alice.id, "d1", "t1", [save_images(archive, alice.id, 1, "A")[0].id])
    newer = archive.record_history(alice.id, "d2", "t2", [save_images(archive, alice.id, 1, "B")[0].id])
    archive.record_history(bob.id, "d3", "t3", [save_images(archive, bob.id, 1, "C")[0].id])

    assert [entry.id for entry in archive.load_history(alice.id)] == [newer.id, older.id]
    assert len(archive.load_history(bob.id)) == 1
    assert archive.load_history("user_missing") == []

def test_delete_history_keeps_images(archive, alice):
    images = save_images(archive, alice.id, 2)
    entry = archive.record_history(alice.id, "d", "t", [image.id for image in images])

    assert archive.delete_history(entry.id) is True
    assert archive.load_history(alice.id) == []
    assert len(archive.list_user_images(alice.id)) == 2
    assert archive.delete_history(entry.id) is False

def test_record_generation_saves_generated_images_and_entry(archive, alice):
    payloads = ["data:image/png;base64,ONE", "data:image/webp;base64,TWO"]
    when = datetime(2026, 3, 7, 16, 5, 9)
    entry = archive.record_generation(alice.id, payloads, when=when)

    assert entry.images == payloads
    assert entry.thumbnail == payloads[0]
    assert (entry.date, entry.time) == ("3/7/2026", "4:05:09 PM")
    saved = archive.list_user_images(alice.id)
    assert {image.mime_type for image in saved} == {"image/png", "image/webp"}
    assert not any(image.is_original for image in saved)

def test_record_generation_for_unknown_user_writes_nothing(archive, store):
    with pytest.raises(MissingReference):
        archive.record_generation("user_missing", ["data:image/png;base64,ONE"])

# --- Helpers ---

def test_history_labels():
    assert archive_module.history_labels(datetime(2026, 12, 25, 9, 3, 0)) == ("12/25/2026", "9:03:00 AM")
    assert archive_module.history_labels(datetime(2026, 1, 1, 0, 0, 1)) == ("1/1/2026", "12:00:01 AM")

@pytest.mark.parametrize("payload, expected", [
    ("data:image/png;base64,AAAA", "image/png"),
    ("data:;base64,AAAA", "image/jpeg"),
    ("AAAA", "image/jpeg"),
])
def test_mime_type_of(payload, expected):
    assert archive_module.mime_type_of(payload) == expected

def test_missing_thumbnail_row_yields_empty_string():
    history = SimpleNamespace(
        id="hist_1", date="d", time="t", count=1, thumbnail=None,
        links=[SimpleNamespace(image=SimpleNamespace(image_data="data:image/png;base64,X"))],
        created_at=datetime.now(timezone.utc),
    )
    entry = archive_module._to_entry(history)
    assert entry.thumbnail == ""
    assert entry.images == ["data:image/png;base64,X"]
