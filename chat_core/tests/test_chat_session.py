import asyncio
import threading
from datetime import datetime, timedelta, timezone

from chat_core.domain.conversation import ConversationSeed
from chat_core.domain.exceptions import (
    ApiError,
    CollaboratorUnavailableError,
    ConversationBusyError,
    NotFoundError,
)
from chat_core.domain.models import ChatMessage, ChatResult
from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore, seed_conversations
from chat_core.session import ChatSession, SessionConfig


T0 = datetime(2024, 6, 7, 10, 0, tzinfo=timezone.utc)
CONFIG = SessionConfig(provider="fake", model="chat", system_prompt="be brief", timeout=1.0)


class FakeProvider:
    name = "fake"

    def __init__(self, reply="hi"):
        self.reply = reply
        self.requests = []

    async def chat(self, req):
        self.requests.append(req)
        return ChatResult(provider="fake", model=req.model, message=ChatMessage(role="assistant", content=self.reply))


class FailingProvider:
    name = "fake"

    def __init__(self):
        self.calls = 0

    async def chat(self, req):
        self.calls += 1
        raise ApiError(code="API_ERROR", message="boom", http_status=500)


class SlowProvider:
    name = "fake"

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def chat(self, req):
        self.started.set()
        await self.release.wait()
        return ChatResult(provider="fake", model=req.model, message=ChatMessage(role="assistant", content="late"))


def _store():
    return InMemoryConversationStore(seeds=seed_conversations([("1", ConversationSeed(display_name="General"))]))


def _clock(*times):
    it = iter(times)
    return lambda: next(it)


def test_send_commits_exchange():
    store = _store()
    provider = FakeProvider("hi")
    session = ChatSession(store, provider, config=CONFIG, clock=_clock(T0, T0 + timedelta(seconds=2)))
    result = asyncio.run(session.send_message("1", "hello"))
    assert result.ok
    assert result.state == "committed"
    msgs = store.get_conversation("1").messages
    assert result.conversation.messages == msgs
    assert [(m.sender, m.text) for m in msgs] == [("assistant", "hi"), ("user", "hello")]
    assert msgs[0].timestamp >= msgs[1].timestamp == T0


def test_send_request_is_stateless():
    store = _store()
    provider = FakeProvider()
    session = ChatSession(store, provider, config=CONFIG)
    asyncio.run(session.send_message("1", "first"))
    asyncio.run(session.send_message("1", "  second  "))
    req = provider.requests[-1]
    assert [(m.role, m.content) for m in req.messages] == [("system", "be brief"), ("user", "  second  ")]
    assert req.stream is False
    assert store.get_conversation("1").messages[1].text == "  second  "


def test_assistant_timestamp_not_before_user():
    store = _store()
    session = ChatSession(store, FakeProvider(), config=CONFIG, clock=_clock(T0, T0 - timedelta(seconds=5)))
    result = asyncio.run(session.send_message("1", "hello"))
    assistant, user = result.conversation.messages
    assert assistant.timestamp == user.timestamp == T0


def test_send_collaborator_failure_leaves_state_unchanged():
    store = _store()
    session = ChatSession(store, FailingProvider(), config=CONFIG)
    result = asyncio.run(session.send_message("1", "hello"))
    assert not result.ok
    assert result.state == "failed"
    assert isinstance(result.error, ApiError)
    assert store.get_conversation("1").messages == ()
    assert session.state("1") == "idle"


def test_send_blank_input_is_skipped():
    store = _store()
    provider = FakeProvider()
    session = ChatSession(store, provider, config=CONFIG)
    result = asyncio.run(session.send_message("1", "   "))
    assert result.ok
    assert result.state == "skipped"
    assert result.conversation == store.get_conversation("1")
    assert provider.requests == []
    assert store.get_conversation("1").messages == ()


def test_send_unknown_conversation():
    provider = FakeProvider()
    session = ChatSession(_store(), provider, config=CONFIG)
    result = asyncio.run(session.send_message("99", "hello"))
    assert isinstance(result.error, NotFoundError)
    assert provider.requests == []


def test_send_timeout_is_collaborator_unavailable():
    store = _store()
    session = ChatSession(
        store,
        SlowProvider(),
        config=SessionConfig(provider="fake", model="chat", system_prompt="s", timeout=0.05),
    )
    result = asyncio.run(session.send_message("1", "hello"))
    assert result.state == "failed"
    assert result.error.code == "TIMEOUT"
    assert store.get_conversation("1").messages == ()
    assert session.state("1") == "idle"


def test_second_send_to_same_conversation_is_rejected_while_in_flight():
    store = _store()
    other = store.create_conversation()
    provider = SlowProvider()
    session = ChatSession(store, provider, config=CONFIG)

    async def scenario():
        first = asyncio.create_task(session.send_message("1", "one"))
        await provider.started.wait()
        assert session.state("1") == "sending"
        busy = await session.send_message("1", "two")
        other_task = asyncio.create_task(session.send_message(other.id, "three"))
        await asyncio.sleep(0)
        assert session.state(other.id) == "sending"
        provider.release.set()
        return await first, busy, await other_task

    first, busy, other_result = asyncio.run(scenario())
    assert isinstance(busy.error, ConversationBusyError)
    assert first.state == "committed"
    assert other_result.state == "committed"
    assert [m.text for m in store.get_conversation("1").messages] == ["late", "one"]
    assert session.state("1") == "idle"


def test_send_http_500_through_ollama_client(monkeypatch):
    from chat_core.providers.ollama_client import OllamaClient

    class SettingsStub:
        http_timeout = 1.0
        ollama_base_url = "http://ollama.test"

    class Resp:
        status_code = 500
        text = "internal error"

    class AsyncClient:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, *a, **kw):
            return Resp()

    monkeypatch.setattr("httpx.AsyncClient", AsyncClient)
    store = _store()
    session = ChatSession(store, OllamaClient(SettingsStub()), config=CONFIG)
    result = asyncio.run(session.send_message("1", "hello"))
    assert result.state == "failed"
    assert isinstance(result.error, ApiError)
    assert result.error.http_status == 500
    assert store.get_conversation("1").messages == ()


def test_send_with_malformed_usage_counts_still_commits(monkeypatch):
    from chat_core.providers.ollama_client import OllamaClient

    class SettingsStub:
        http_timeout = 1.0
        ollama_base_url = "http://ollama.test"

    class Resp:
        status_code = 200
        text = ""

        def json(self):
            return {"message": {"content": "hi"}, "eval_count": "n/a"}

    class AsyncClient:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, *a, **kw):
            return Resp()

    monkeypatch.setattr("httpx.AsyncClient", AsyncClient)
    store = _store()
    session = ChatSession(store, OllamaClient(SettingsStub()), config=CONFIG)
    result = asyncio.run(session.send_message("1", "hello"))
    assert result.state == "committed"
    assert [m.text for m in store.get_conversation("1").messages] == ["hi", "hello"]


def test_send_unexpected_provider_exception_is_failed_result():
    class BrokenProvider:
        name = "fake"

        async def chat(self, req):
            raise ValueError("invalid literal for int()")

    store = _store()
    session = ChatSession(store, BrokenProvider(), config=CONFIG)
    result = asyncio.run(session.send_message("1", "hello"))
    assert result.state == "failed"
    assert isinstance(result.error, CollaboratorUnavailableError)
    assert result.error.code == "PROVIDER_ERROR"
    assert store.get_conversation("1").messages == ()
    assert session.state("1") == "idle"


def test_second_send_from_another_thread_is_rejected():
    started = threading.Event()
    release = threading.Event()

    class BlockingProvider:
        name = "fake"

        async def chat(self, req):
            started.set()
            await asyncio.to_thread(release.wait, 5)
            return ChatResult(provider="fake", model=req.model, message=ChatMessage(role="assistant", content="ok"))

    store = _store()
    session = ChatSession(store, BlockingProvider(), config=CONFIG)
    results = {}

    def first():
        results["first"] = asyncio.run(session.send_message("1", "one"))

    t = threading.Thread(target=first)
    t.start()
    try:
        assert started.wait(5)
        results["second"] = asyncio.run(session.send_message("1", "two"))
    finally:
        release.set()
        t.join()
    assert isinstance(results["second"].error, ConversationBusyError)
    assert results["first"].state == "committed"
    assert [m.text for m in store.get_conversation("1").messages] == ["ok", "one"]
