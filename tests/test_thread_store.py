import asyncio
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from marketplace_messaging.core.errors import Forbidden, InternalError, InvalidContent, InvalidRecipient, MissingRecipient, NotFound


async def _unread_messages(db, conversation_id, reader_id):
    return await db["messages"].count_documents(
        {"conversation_id": conversation_id, "sender_id": {"$ne": reader_id}, "is_read": False}
    )


async def test_find_or_create_is_idempotent_for_either_order(store, db, users):
    first = await store.find_or_create_conversation(users["alice"], users["bob"])
    second = await store.find_or_create_conversation(users["bob"], users["alice"])

    assert first["_id"] == second["_id"]
    assert first["unread_counters"] == {users["alice"]: 0, users["bob"]: 0}
    assert await db["conversations"].count_documents({}) == 1


async def test_concurrent_find_or_create_yields_one_conversation(store, db, users):
    calls = [
        store.find_or_create_conversation(users["alice"], users["bob"], "p1") if i % 2 else
        store.find_or_create_conversation(users["bob"], users["alice"], "p1")
        for i in range(10)
    ]
    results = await asyncio.gather(*calls)

    assert len({r["_id"] for r in results}) == 1
    assert await db["conversations"].count_documents({}) == 1


async def test_one_conversation_per_product(store, users):
    general = await store.find_or_create_conversation(users["alice"], users["bob"])
    about_p1 = await store.find_or_create_conversation(users["alice"], users["bob"], "p1")
    about_p2 = await store.find_or_create_conversation(users["alice"], users["bob"], "p2")

    assert len({general["_id"], about_p1["_id"], about_p2["_id"]}) == 3
    assert general["product_id"] is None


async def test_find_or_create_rejects_bad_recipient(store, users):
    with pytest.raises(InvalidRecipient):
        await store.find_or_create_conversation(users["alice"], users["alice"])
    with pytest.raises(MissingRecipient):
        await store.find_or_create_conversation(users["alice"], None)


@pytest.mark.parametrize("recipient", ["bob.smith", "$bob", "bo$b"])
async def test_find_or_create_rejects_ids_unusable_as_counter_keys(store, db, users, recipient):
    with pytest.raises(InvalidRecipient):
        await store.find_or_create_conversation(users["alice"], recipient)
    assert await db["conversations"].count_documents({}) == 0


@pytest.mark.parametrize("content", ["", "   ", "x" * 1001, None])
async def test_append_rejects_invalid_content(store, users, content):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    with pytest.raises(InvalidContent):
        await store.append_message(conversation["_id"], users["alice"], content)


@pytest.mark.parametrize("content", ["a", "x" * 1000, "  padded  "])
async def test_append_accepts_boundary_content(store, users, content):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    message, updated = await store.append_message(conversation["_id"], users["alice"], content)

    assert message["content"] == content.strip()
    assert updated["last_message_id"] == message["_id"]


async def test_append_requires_participant(store, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    with pytest.raises(Forbidden):
        await store.append_message(conversation["_id"], users["carol"], "hello")


async def test_unknown_or_malformed_conversation_is_not_found(store, users):
    with pytest.raises(NotFound):
        await store.append_message(ObjectId(), users["alice"], "hello")
    with pytest.raises(NotFound):
        await store.get_conversation("not-an-id", users["alice"])


async def test_send_increments_only_the_recipient(store, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    for text in ("one", "two", "three"):
        _, updated = await store.append_message(conversation["_id"], users["alice"], text)

    assert updated["unread_counters"][users["bob"]] == 3
    assert updated["unread_counters"][users["alice"]] == 0
    assert updated["message_seq"] == 3


async def test_concurrent_sends_do_not_lose_increments(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    await asyncio.gather(*(store.append_message(conversation["_id"], users["alice"], f"m{i}") for i in range(20)))

    stored = await db["conversations"].find_one({"_id": conversation["_id"]})
    assert stored["unread_counters"][users["bob"]] == 20
    assert stored["last_message_seq"] == 20


async def test_mark_read_flips_inbound_messages_only(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    cid = conversation["_id"]
    await store.append_message(cid, users["alice"], "hi bob")
    await store.append_message(cid, users["bob"], "hi alice")
    await store.append_message(cid, users["alice"], "still there?")

    updated = await store.mark_read(cid, users["bob"])

    assert updated["unread_counters"][users["bob"]] == 0
    assert updated["unread_counters"][users["alice"]] == 1
    from_alice = await db["messages"].find({"conversation_id": cid, "sender_id": users["alice"]}).to_list(length=10)
    assert all(m["is_read"] and m["read_at"] is not None for m in from_alice)
    from_bob = await db["messages"].find_one({"conversation_id": cid, "sender_id": users["bob"]})
    assert from_bob["is_read"] is False


async def test_mark_read_requires_participant(store, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    with pytest.raises(Forbidden):
        await store.mark_read(conversation["_id"], users["carol"])


async def test_send_landing_during_mark_read_stays_unread(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    cid = conversation["_id"]
    await store.append_message(cid, users["alice"], "first")

    original = store._messages.mark_read

    async def racing_mark_read(conversation_id, reader_id):
        flipped = await original(conversation_id, reader_id)
        await store.append_message(cid, users["alice"], "arrived mid mark-read")
        return flipped

    store._messages.mark_read = racing_mark_read
    updated = await store.mark_read(cid, users["bob"])

    assert updated["unread_counters"][users["bob"]] == 1
    assert await _unread_messages(db, cid, users["bob"]) == 1


async def test_mark_read_before_counter_increment_never_goes_negative(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    cid = conversation["_id"]
    original = store._conversations.update_on_new_message

    async def slow_counter(*args, **kwargs):
        # the reader marks the thread read after the insert but before the increment
        await store.mark_read(cid, users["bob"])
        return await original(*args, **kwargs)

    store._conversations.update_on_new_message = slow_counter
    _, updated = await store.append_message(cid, users["alice"], "in flight")

    assert updated["unread_counters"][users["bob"]] == 1
    assert await _unread_messages(db, cid, users["bob"]) == 1


async def test_failed_delivery_flag_rolls_back_the_message(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    cid = conversation["_id"]
    earlier, _ = await store.append_message(cid, users["alice"], "earlier")

    store._messages.mark_delivered = AsyncMock(side_effect=PyMongoError("write failed"))
    with pytest.raises(InternalError):
        await store.append_message(cid, users["alice"], "lost")

    stored = await db["conversations"].find_one({"_id": cid})
    assert stored["unread_counters"][users["bob"]] == 1
    assert stored["last_message_id"] == earlier["_id"]
    assert await db["messages"].count_documents({"conversation_id": cid}) == 1

    updated = await store.mark_read(cid, users["bob"])
    assert updated["unread_counters"][users["bob"]] == 0
    assert await _unread_messages(db, cid, users["bob"]) == 0


async def test_failed_counter_update_leaves_no_orphan_message(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    cid = conversation["_id"]

    store._conversations.update_on_new_message = AsyncMock(side_effect=PyMongoError("write failed"))
    with pytest.raises(InternalError):
        await store.append_message(cid, users["alice"], "lost")

    stored = await db["conversations"].find_one({"_id": cid})
    assert stored["unread_counters"][users["bob"]] == 0
    assert stored["last_message_id"] is None
    assert await db["messages"].count_documents({"conversation_id": cid}) == 0


async def test_unread_counter_tracks_unread_messages(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    cid = conversation["_id"]
    steps = ["send", "send", "read", "send", "read", "read", "send", "send", "send"]
    for step in steps:
        if step == "send":
            await store.append_message(cid, users["alice"], "ping")
        else:
            await store.mark_read(cid, users["bob"])
        stored = await db["conversations"].find_one({"_id": cid})
        counter = stored["unread_counters"].get(users["bob"], 0)
        assert counter >= 0
        assert counter == await _unread_messages(db, cid, users["bob"])


async def test_list_messages_is_chronological(store, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    other = await store.find_or_create_conversation(users["alice"], users["carol"])
    for i in range(7):
        await store.append_message(conversation["_id"], users["alice"] if i % 2 else users["bob"], f"m{i}")
        await store.append_message(other["_id"], users["carol"], f"noise{i}")

    items, total = await store.list_messages(conversation["_id"], users["bob"], page=1, page_size=50)
    assert [m["content"] for m in items] == [f"m{i}" for i in range(7)]
    assert total == 7

    newest, _ = await store.list_messages(conversation["_id"], users["bob"], page=1, page_size=3)
    older, _ = await store.list_messages(conversation["_id"], users["bob"], page=2, page_size=3)
    assert [m["content"] for m in newest] == ["m4", "m5", "m6"]
    assert [m["content"] for m in older] == ["m1", "m2", "m3"]


async def test_list_messages_requires_participant(store, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    with pytest.raises(Forbidden):
        await store.list_messages(conversation["_id"], users["carol"])


async def test_list_conversations_newest_activity_first(store, users):
    with_bob = await store.find_or_create_conversation(users["alice"], users["bob"])
    with_carol = await store.find_or_create_conversation(users["alice"], users["carol"])
    await store.append_message(with_bob["_id"], users["bob"], "older")
    await asyncio.sleep(0.01)
    await store.append_message(with_carol["_id"], users["carol"], "newer")

    items, total = await store.list_conversations(users["alice"])
    assert [c["_id"] for c in items] == [with_carol["_id"], with_bob["_id"]]
    assert total == 2

    bob_items, bob_total = await store.list_conversations(users["bob"])
    assert [c["_id"] for c in bob_items] == [with_bob["_id"]]
    assert bob_total == 1


async def test_unread_total_sums_all_conversations(store, users):
    with_bob = await store.find_or_create_conversation(users["alice"], users["bob"])
    with_carol = await store.find_or_create_conversation(users["alice"], users["carol"])
    await store.append_message(with_bob["_id"], users["bob"], "1")
    await store.append_message(with_bob["_id"], users["bob"], "2")
    await store.append_message(with_carol["_id"], users["carol"], "3")

    assert await store.unread_total(users["alice"]) == 3
    assert await store.unread_total(users["bob"]) == 0


async def test_delete_conversation_cascades(store, db, users):
    conversation = await store.find_or_create_conversation(users["alice"], users["bob"])
    await store.append_message(conversation["_id"], users["alice"], "bye")

    with pytest.raises(Forbidden):
        await store.delete_conversation(conversation["_id"], users["carol"])

    await store.delete_conversation(conversation["_id"], users["bob"])
    assert await db["conversations"].count_documents({}) == 0
    assert await db["messages"].count_documents({"conversation_id": conversation["_id"]}) == 0
    with pytest.raises(NotFound):
        await store.get_conversation(conversation["_id"], users["bob"])
