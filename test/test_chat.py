import json

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from assistmate.database.models import Chat, Notification, Request, RequestCandidate, RequestStatus
from assistmate.services.chat_channel import ChatChannel, RoomManager
from assistmate.models.chat import JoinRoomPayload, SendMessagePayload


class FakeSocket:
    def __init__(self, broken=False):
        self.frames = []
        self.broken = broken

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket closed")
        self.frames.append(data)


def frame(event, **data):
    return json.dumps({"event": event, "data": data})


@pytest_asyncio.fixture
async def in_progress_request(db_session, alice, bob) -> Request:
    request = Request(
        title="Carry groceries",
        category="errand",
        description="Two bags",
        status=RequestStatus.IN_PROGRESS,
        longitude=77.5946,
        latitude=12.9716,
        user_id=alice.id,
        created_by_id=alice.id,
        resolver_id=bob.id,
    )
    db_session.add(request)
    await db_session.commit()
    return request


@pytest_asyncio.fixture
async def open_request(db_session, alice, carol) -> Request:
    request = Request(
        title="Walk the dog",
        category="pets",
        description="Thirty minutes",
        status=RequestStatus.CREATED,
        longitude=77.5946,
        latitude=12.9716,
        user_id=alice.id,
        created_by_id=alice.id,
        candidates=[RequestCandidate(user_id=carol.id, position=0)],
    )
    db_session.add(request)
    await db_session.commit()
    return request


@pytest.fixture
def channel(session_factory, push_sender) -> ChatChannel:
    return ChatChannel(
        RoomManager(),
        session_factory=session_factory,
        push_sender_factory=lambda: push_sender,
        require_participant=True,
    )


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_participants_can_join(channel, in_progress_request, alice, carol):
    alice_ws, carol_ws = FakeSocket(), FakeSocket()

    assert await channel.join(alice_ws, JoinRoomPayload(requestId=in_progress_request.id, userId=alice.id))
    assert not await channel.join(carol_ws, JoinRoomPayload(requestId=in_progress_request.id, userId=carol.id))
    assert not await channel.join(carol_ws, JoinRoomPayload(requestId=9999, userId=carol.id))

    assert channel.rooms.members(str(in_progress_request.id)) == {alice_ws}


@pytest.mark.asyncio
async def test_join_without_membership_check(session_factory, push_sender, in_progress_request, carol):
    channel = ChatChannel(RoomManager(), session_factory=session_factory,
                          push_sender_factory=lambda: push_sender, require_participant=False)
    ws = FakeSocket()

    assert await channel.join(ws, JoinRoomPayload(requestId=in_progress_request.id, userId=carol.id))


@pytest.mark.asyncio
async def test_send_message_persists_broadcasts_and_pushes(channel, session_factory, push_sender,
                                                            in_progress_request, alice, bob):
    alice_ws, bob_ws = FakeSocket(), FakeSocket()
    await channel.handle(alice_ws, frame("join_room", requestId=in_progress_request.id, userId=alice.id))
    await channel.handle(bob_ws, frame("join_room", requestId=in_progress_request.id, userId=bob.id))

    await channel.handle(alice_ws, frame(
        "send_message", requestId=in_progress_request.id, senderId=alice.id, message="  On my way?  ",
        receiverId=bob.id,
    ))

    async with session_factory() as session:
        chats = (await session.execute(select(Chat))).scalars().all()
        assert len(chats) == 1
        assert chats[0].participants == [alice.id, bob.id]
        assert chats[0].message == "On my way?"
        request = await session.get(Request, in_progress_request.id)
        assert [chat.id for chat in request.chats] == [chats[0].id]

    for ws in (alice_ws, bob_ws):
        assert len(ws.frames) == 1
        assert ws.frames[0]["event"] == "receive_message"
        data = ws.frames[0]["data"]
        assert data["message"] == "On my way?"
        assert data["senderId"] == alice.id
        assert data["sender"]["firstName"] == "Alice"

    assert len(push_sender.sent) == 1
    assert push_sender.sent[0]["token"] == "fmc-bob"
    assert push_sender.sent[0]["title"] == "New message from Alice Smith"
    assert push_sender.sent[0]["body"] == "On my way?"

    async with session_factory() as session:
        [notification] = (await session.execute(select(Notification))).scalars().all()
        assert notification.trigger == "new_message"
        assert (notification.user_id, notification.owner_id) == (bob.id, alice.id)


@pytest.mark.asyncio
async def test_non_participant_message_is_dropped(channel, session_factory, push_sender, in_progress_request,
                                                  alice, carol):
    alice_ws = FakeSocket()
    await channel.join(alice_ws, JoinRoomPayload(requestId=in_progress_request.id, userId=alice.id))

    await channel.handle(FakeSocket(), frame(
        "send_message", requestId=in_progress_request.id, senderId=carol.id, message="let me in",
    ))

    assert await count_rows(session_factory, Chat) == 0
    assert alice_ws.frames == []
    assert push_sender.sent == []


@pytest.mark.asyncio
async def test_message_before_resolver_is_dropped(channel, session_factory, open_request, alice):
    result = await channel.send_message(
        FakeSocket(), SendMessagePayload(requestId=open_request.id, senderId=alice.id, message="hello?")
    )

    assert result is None
    assert await count_rows(session_factory, Chat) == 0


@pytest.mark.asyncio
async def test_message_for_missing_request_is_dropped(channel, session_factory, alice):
    result = await channel.send_message(
        FakeSocket(), SendMessagePayload(requestId=9999, senderId=alice.id, message="hello?")
    )

    assert result is None
    assert await count_rows(session_factory, Chat) == 0


@pytest.mark.asyncio
async def test_resolver_reply_without_token_skips_push(channel, session_factory, push_sender, db_session,
                                                       in_progress_request, alice, bob):
    alice.fmc_token = None
    await db_session.commit()

    chat = await channel.send_message(
        FakeSocket(), SendMessagePayload(requestId=in_progress_request.id, senderId=bob.id, message="Here")
    )

    assert chat is not None
    assert push_sender.sent == []
    assert await count_rows(session_factory, Notification) == 0


@pytest.mark.asyncio
async def test_messages_broadcast_in_send_order(channel, in_progress_request, alice, bob):
    bob_ws = FakeSocket()
    await channel.join(bob_ws, JoinRoomPayload(requestId=in_progress_request.id, userId=bob.id))

    for text in ("one", "two", "three"):
        await channel.send_message(
            FakeSocket(), SendMessagePayload(requestId=in_progress_request.id, senderId=alice.id, message=text)
        )

    assert [f["data"]["message"] for f in bob_ws.frames] == ["one", "two", "three"]
    assert channel._room_locks == {}


@pytest.mark.asyncio
async def test_bad_frames_are_logged_not_raised(channel, in_progress_request):
    ws = FakeSocket()

    await channel.handle(ws, "not json")
    await channel.handle(ws, frame("dance"))
    await channel.handle(ws, frame("send_message", requestId=in_progress_request.id, message=""))

    assert ws.frames == []


@pytest.mark.asyncio
async def test_disconnect_leaves_every_room(channel, in_progress_request, alice):
    ws = FakeSocket()
    await channel.join(ws, JoinRoomPayload(requestId=in_progress_request.id, userId=alice.id))

    await channel.disconnect(ws)

    assert channel.rooms.members(str(in_progress_request.id)) == set()


@pytest.mark.asyncio
async def test_emit_drops_closed_sockets():
    rooms = RoomManager()
    healthy, broken = FakeSocket(), FakeSocket(broken=True)
    await rooms.join("1", healthy)
    await rooms.join("1", broken)

    delivered = await rooms.emit("1", "receive_message", {"message": "hi"})

    assert delivered == 1
    assert rooms.members("1") == {healthy}


class BrokenPushSender:
    async def send(self, token, title, body, data=None):
        raise RuntimeError("FCM unavailable")


@pytest.mark.asyncio
async def test_push_failure_keeps_message_and_broadcast(session_factory, in_progress_request, alice, bob):
    channel = ChatChannel(
        RoomManager(),
        session_factory=session_factory,
        push_sender_factory=lambda: BrokenPushSender(),
        require_participant=True,
    )
    alice_ws, bob_ws = FakeSocket(), FakeSocket()
    await channel.handle(alice_ws, frame("join_room", requestId=in_progress_request.id, userId=alice.id))
    await channel.handle(bob_ws, frame("join_room", requestId=in_progress_request.id, userId=bob.id))

    await channel.handle(alice_ws, frame("send_message", requestId=in_progress_request.id, senderId=alice.id,
                                         receiverId=bob.id, message="still there?"))

    assert await count_rows(session_factory, Chat) == 1
    assert await count_rows(session_factory, Notification) == 1
    assert [f["event"] for f in bob_ws.frames] == ["receive_message"]
    assert bob_ws.frames[0]["data"]["message"] == "still there?"
    assert channel._room_locks == {}
