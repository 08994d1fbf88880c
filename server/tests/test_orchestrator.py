import httpx
import pytest

from conftest import FakeProvider
from shadowai.core.auth import AuthContext
from shadowai.core.errors import AuthError, NotFoundError, ProtocolError, UpstreamError, ValidationError
from shadowai.providers.chat_completions import ChatCompletionsProvider
from shadowai.services.completion import CompletionClient
from shadowai.services.orchestrator import ConversationOrchestrator, derive_title


def test_derive_title_keeps_short_text():
    assert derive_title("Hello there, how are you?") == "Hello there, how are you?"
    assert derive_title("x" * 50) == "x" * 50


def test_derive_title_truncates_long_text():
    text = "abcdefghij" * 6
    title = derive_title(text)
    assert title == text[:47] + "..."
    assert len(title) == 50


async def test_first_turn_sets_title(orchestrator, gateway, auth):
    conv = await orchestrator.start_conversation(auth)

    result = await orchestrator.send_turn(conv.id, "  Hello there, how are you?  ", auth)

    assert result.title == "Hello there, how are you?"
    stored = await gateway.get_conversation(auth.user_id, conv.id)
    assert stored.title == "Hello there, how are you?"
    assert result.user_message.content == "Hello there, how are you?"
    assert result.assistant_message.role == "assistant"


async def test_long_first_message_title_is_truncated(orchestrator, gateway, auth):
    conv = await orchestrator.start_conversation(auth)
    text = "Tell me everything about the history of the Roman Empire!!"
    text = (text + "x" * 60)[:60]

    await orchestrator.send_turn(conv.id, text, auth)

    stored = await gateway.get_conversation(auth.user_id, conv.id)
    assert stored.title == text[:47] + "..."


async def test_title_is_only_derived_on_first_message(orchestrator, gateway, auth):
    conv = await orchestrator.start_conversation(auth)
    await orchestrator.send_turn(conv.id, "First question", auth)

    result = await orchestrator.send_turn(conv.id, "Second question", auth)

    assert result.title is None
    stored = await gateway.get_conversation(auth.user_id, conv.id)
    assert stored.title == "First question"


async def test_free_user_gets_free_budget(orchestrator, provider, settings, auth):
    conv = await orchestrator.start_conversation(auth)

    result = await orchestrator.send_turn(conv.id, "Hi", auth)

    assert provider.calls[0]["token_budget"] == 1000
    assert provider.calls[0]["model"] == settings.free_model
    assert result.selection.tier == "free"


async def test_subscribed_user_gets_premium_budget(orchestrator, gateway, provider, settings, auth):
    await gateway.upsert_subscriber(auth.user_id, subscribed=True, subscription_tier="Premium")
    conv = await orchestrator.start_conversation(auth)

    result = await orchestrator.send_turn(conv.id, "Hi", auth)

    assert provider.calls[0]["token_budget"] == 2000
    assert provider.calls[0]["model"] == settings.premium_model
    assert result.selection.tier == "Premium"


async def test_prompt_is_system_then_bounded_history(gateway, resolver, provider, settings, auth):
    orchestrator = ConversationOrchestrator(
        gateway, resolver, CompletionClient(provider, "SYSTEM"), history_window=4
    )
    conv = await orchestrator.start_conversation(auth)
    for i in range(3):
        await orchestrator.send_turn(conv.id, f"question {i}", auth)

    await orchestrator.send_turn(conv.id, "latest", auth)

    messages = provider.calls[-1]["messages"]
    assert messages[0].role == "system"
    assert messages[0].content == "SYSTEM"
    assert [m.content for m in messages[1:-1]] == ["question 1", provider.reply, "question 2", provider.reply]
    assert messages[-1].role == "user"
    assert messages[-1].content == "latest"


async def test_turn_returns_both_persisted_records(orchestrator, gateway, auth):
    conv = await orchestrator.start_conversation(auth)

    result = await orchestrator.send_turn(conv.id, "Hi", auth)

    assert result.user_message.id < result.assistant_message.id
    assert result.user_message.created_at <= result.assistant_message.created_at
    rows = await gateway.list_messages(auth.user_id, conv.id)
    assert [(m.role, m.id) for m in rows] == [
        ("user", result.user_message.id),
        ("assistant", result.assistant_message.id),
    ]


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_empty_input_is_rejected_before_any_write(orchestrator, gateway, provider, auth, text):
    conv = await orchestrator.start_conversation(auth)

    with pytest.raises(ValidationError):
        await orchestrator.send_turn(conv.id, text, auth)

    assert await gateway.count_messages(conv.id) == 0
    assert provider.calls == []


async def test_missing_auth_is_rejected(orchestrator, auth):
    conv = await orchestrator.start_conversation(auth)
    with pytest.raises(AuthError):
        await orchestrator.send_turn(conv.id, "hi", None)


async def test_other_users_conversation_is_not_written(orchestrator, gateway, provider, auth):
    conv = await orchestrator.start_conversation(auth)

    with pytest.raises(NotFoundError):
        await orchestrator.send_turn(conv.id, "sneaky", AuthContext(user_id="user-2"))

    assert await gateway.count_messages(conv.id) == 0
    assert provider.calls == []


async def test_upstream_500_keeps_only_user_message(gateway, resolver, settings, auth):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "internal failure"}})

    provider = ChatCompletionsProvider(
        settings.completion_base_url, "key", transport=httpx.MockTransport(handler)
    )
    orchestrator = ConversationOrchestrator(gateway, resolver, CompletionClient(provider, "SYSTEM"))
    conv = await orchestrator.start_conversation(auth)
    before = await gateway.count_messages(conv.id)

    with pytest.raises(UpstreamError) as excinfo:
        await orchestrator.send_turn(conv.id, "Are you there?", auth)

    assert excinfo.value.upstream_status == 500
    assert excinfo.value.upstream_message == "internal failure"
    rows = await gateway.list_messages(auth.user_id, conv.id)
    assert len(rows) == before + 1
    assert rows[-1].role == "user"


async def test_malformed_reply_keeps_only_user_message(gateway, resolver, auth):
    provider = FakeProvider(error=ProtocolError("Invalid AI response format"))
    orchestrator = ConversationOrchestrator(gateway, resolver, CompletionClient(provider, "SYSTEM"))
    conv = await orchestrator.start_conversation(auth)

    with pytest.raises(ProtocolError):
        await orchestrator.send_turn(conv.id, "hello", auth)

    assert await gateway.count_messages(conv.id) == 1


async def test_retry_after_failure_appends_another_user_message(gateway, resolver, auth):
    provider = FakeProvider(error=UpstreamError("down", upstream_status=503))
    orchestrator = ConversationOrchestrator(gateway, resolver, CompletionClient(provider, "SYSTEM"))
    conv = await orchestrator.start_conversation(auth)

    with pytest.raises(UpstreamError):
        await orchestrator.send_turn(conv.id, "hello", auth)
    provider.error = None
    await orchestrator.send_turn(conv.id, "hello", auth)

    rows = await gateway.list_messages(auth.user_id, conv.id)
    assert [m.role for m in rows] == ["user", "user", "assistant"]
    # The unanswered message is part of the retried prompt
    assert [m.content for m in provider.calls[-1]["messages"][1:]] == ["hello", "hello"]


async def test_both_writes_reach_live_subscribers(orchestrator, feed, auth):
    conv = await orchestrator.start_conversation(auth)
    sub = feed.subscribe("messages", conversation_id=conv.id)

    result = await orchestrator.send_turn(conv.id, "Hi", auth)

    first = await sub.get(timeout=1)
    second = await sub.get(timeout=1)
    assert [first["id"], second["id"]] == [result.user_message.id, result.assistant_message.id]
    sub.close()


async def test_delete_and_history(orchestrator, auth):
    conv = await orchestrator.start_conversation(auth)
    await orchestrator.send_turn(conv.id, "Hi", auth)
    assert len(await orchestrator.history(auth, conv.id)) == 2

    await orchestrator.delete_conversation(auth, conv.id)

    assert await orchestrator.list_conversations(auth) == []


async def test_zero_history_window_still_titles_once(gateway, resolver, provider, auth):
    orchestrator = ConversationOrchestrator(gateway, resolver, CompletionClient(provider, "SYSTEM"), history_window=0)
    conv = await orchestrator.start_conversation(auth)

    first = await orchestrator.send_turn(conv.id, "one", auth)
    second = await orchestrator.send_turn(conv.id, "two", auth)

    assert first.title == "one"
    assert second.title is None
    assert [m.content for m in provider.calls[-1]["messages"]] == ["SYSTEM", "two"]
