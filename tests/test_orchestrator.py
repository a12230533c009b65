"""Tests for the conversation orchestrator."""

import asyncio

import pytest

from shared.models import (
    ChatErrorCode,
    ChatRequest,
    ChatStatus,
    GenerateRequest,
    MessageRole,
)


def make_orchestrator(*providers):
    from orchestrator.gateway import ConversationOrchestrator
    from providers.registry import ProviderRegistry

    registry = ProviderRegistry()
    for name, provider in providers:
        registry.register(provider, name)
    return ConversationOrchestrator(registry)


def ollama_mock():
    from providers.mock import MockProvider

    return MockProvider(default_model="gemma2:2b")


def openai_mock():
    from providers.mock import MockProvider

    return MockProvider(
        default_model="gpt-3.5-turbo",
        models=["gpt-3.5-turbo", "gpt-4o"],
        verifies_models=True
    )


class TestGenerate:
    """Tests for starting sessions."""

    @pytest.mark.asyncio
    async def test_generate_then_chat(self):
        """Test the default-model start followed by a continuation."""
        provider = ollama_mock()
        provider.set_next_response("r1")
        provider.set_next_response("r2")
        orchestrator = make_orchestrator(("ollama", provider))

        first = await orchestrator.generate("ollama", GenerateRequest(model="", prompt="hello"))

        assert first.status == ChatStatus.COMPLETED
        assert first.model == "gemma2:2b"
        assert first.response == "r1"

        second = await orchestrator.chat("ollama", ChatRequest(id=first.id, prompt="again"))

        assert second.status == ChatStatus.COMPLETED
        assert second.model == "gemma2:2b"
        assert second.id == first.id

        history = await orchestrator.get_history("ollama", first.id)
        assert [(m.role, m.content) for m in history] == [
            (MessageRole.USER, "hello"),
            (MessageRole.ASSISTANT, "r1"),
            (MessageRole.USER, "again"),
            (MessageRole.ASSISTANT, "r2"),
        ]
        assert provider.call_history[1]["model"] == "gemma2:2b"

    @pytest.mark.asyncio
    async def test_generate_fresh_id(self):
        """Test that each start gets an id unseen in the store."""
        orchestrator = make_orchestrator(("ollama", ollama_mock()))
        store = orchestrator.store_for("ollama")

        ids = set()
        for _ in range(5):
            before = set(s["id"] for s in store.list_sessions())
            result = await orchestrator.generate("ollama", GenerateRequest(prompt="hi"))
            assert result.id not in before
            ids.add(result.id)

        assert len(ids) == 5

    @pytest.mark.asyncio
    async def test_generate_with_explicit_model(self):
        """Test that Ollama uses the caller's model without checking it."""
        provider = ollama_mock()
        orchestrator = make_orchestrator(("ollama", provider))

        result = await orchestrator.generate(
            "ollama", GenerateRequest(model="llama3:8b", prompt="hi")
        )

        assert result.model == "llama3:8b"
        assert result.model_substituted is False
        assert provider.call_history[0]["model"] == "llama3:8b"

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        """Test that an unregistered backend raises."""
        from providers.registry import UnknownBackendError

        orchestrator = make_orchestrator(("ollama", ollama_mock()))

        with pytest.raises(UnknownBackendError):
            await orchestrator.generate("claude", GenerateRequest(prompt="hi"))


class TestChat:
    """Tests for continuing sessions."""

    @pytest.mark.asyncio
    async def test_unknown_id_bootstraps_session(self):
        """Test that an unknown id starts a session with that literal id."""
        provider = ollama_mock()
        orchestrator = make_orchestrator(("ollama", provider))

        result = await orchestrator.chat("ollama", ChatRequest(id="unknown-id", prompt="hi"))

        assert result.status == ChatStatus.COMPLETED
        assert result.id == "unknown-id"
        assert result.model == "gemma2:2b"

        session = await orchestrator.get_session("ollama", "unknown-id")
        assert session.model == "gemma2:2b"
        assert len(session.messages) == 2

    @pytest.mark.asyncio
    async def test_alternation_after_n_turns(self):
        """Test that N turns give 2N strictly alternating messages."""
        orchestrator = make_orchestrator(("ollama", ollama_mock()))

        first = await orchestrator.generate("ollama", GenerateRequest(prompt="turn 0"))
        for i in range(1, 6):
            await orchestrator.chat("ollama", ChatRequest(id=first.id, prompt=f"turn {i}"))

        history = await orchestrator.get_history("ollama", first.id)

        assert len(history) == 12
        for i, message in enumerate(history):
            expected = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
            assert message.role == expected

    @pytest.mark.asyncio
    async def test_model_not_set_is_client_error(self):
        """Test that an empty stored model fails without a backend call."""
        provider = ollama_mock()
        orchestrator = make_orchestrator(("ollama", provider))
        await orchestrator.store_for("ollama").get_or_create("blank", "", "ollama")

        result = await orchestrator.chat("ollama", ChatRequest(id="blank", prompt="hi"))

        assert result.status == ChatStatus.ERROR
        assert result.error_code == ChatErrorCode.MODEL_NOT_SET
        assert result.error_code.is_client_error
        assert provider.call_history == []
        assert await orchestrator.get_history("ollama", "blank") == []

    @pytest.mark.asyncio
    async def test_sessions_scoped_per_backend(self):
        """Test that the same id on two backends refers to two sessions."""
        orchestrator = make_orchestrator(("ollama", ollama_mock()), ("openai", openai_mock()))

        await orchestrator.chat("ollama", ChatRequest(id="same", prompt="a"))
        await orchestrator.chat("openai", ChatRequest(id="same", prompt="b"))

        ollama_session = await orchestrator.get_session("ollama", "same")
        openai_session = await orchestrator.get_session("openai", "same")

        assert ollama_session.model == "gemma2:2b"
        assert openai_session.model == "gpt-3.5-turbo"


class TestModelFallback:
    """Tests for OpenAI-style model fallback."""

    @pytest.mark.asyncio
    async def test_unavailable_model_uses_default(self):
        """Test that a fresh session is created with the default model."""
        provider = openai_mock()
        orchestrator = make_orchestrator(("openai", provider))

        result = await orchestrator.generate(
            "openai", GenerateRequest(model="gpt-unknown", prompt="hi")
        )

        assert result.status == ChatStatus.COMPLETED
        assert result.model == "gpt-3.5-turbo"
        assert result.requested_model == "gpt-unknown"
        assert result.model_substituted is True

        session = await orchestrator.get_session("openai", result.id)
        assert session.model == "gpt-3.5-turbo"
        assert provider.call_history[0]["model"] == "gpt-3.5-turbo"

    @pytest.mark.asyncio
    async def test_available_model_kept(self):
        """Test that an available model is not substituted."""
        orchestrator = make_orchestrator(("openai", openai_mock()))

        result = await orchestrator.generate("openai", GenerateRequest(model="gpt-4o", prompt="hi"))

        assert result.model == "gpt-4o"
        assert result.model_substituted is False

    @pytest.mark.asyncio
    async def test_existing_session_keeps_model(self):
        """Test that fallback never rewrites an existing session's model."""
        provider = openai_mock()
        orchestrator = make_orchestrator(("openai", provider))
        await orchestrator.store_for("openai").get_or_create("legacy", "gpt-retired", "openai")

        result = await orchestrator.chat("openai", ChatRequest(id="legacy", prompt="hi"))

        assert result.status == ChatStatus.COMPLETED
        assert result.model == "gpt-retired"
        assert result.model_substituted is False

        session = await orchestrator.get_session("openai", "legacy")
        assert session.model == "gpt-retired"
        assert provider.call_history[0]["model"] == "gpt-retired"

    @pytest.mark.asyncio
    async def test_idle_session_survives_sweep_during_turn(self):
        """Test that eviction racing a continuation loses neither model nor history."""
        from datetime import timedelta

        from orchestrator.gateway import ConversationOrchestrator
        from providers.mock import MockProvider
        from providers.registry import ProviderRegistry
        from shared.models import ChatMessage, utcnow

        class SweepingProvider(MockProvider):
            """Runs an eviction sweep whenever the backend is awaited."""

            async def list_models(self):
                await orchestrator.cleanup_expired()
                return await super().list_models()

            async def complete(self, session):
                await orchestrator.cleanup_expired()
                return await super().complete(session)

        provider = SweepingProvider(
            default_model="gpt-3.5-turbo",
            models=["gpt-3.5-turbo"],
            verifies_models=True
        )
        registry = ProviderRegistry()
        registry.register(provider, "openai")
        orchestrator = ConversationOrchestrator(registry, session_ttl_minutes=1)

        store = orchestrator.store_for("openai")
        session = await store.get_or_create("legacy", "gpt-retired", "openai")
        await store.append("legacy", ChatMessage(role=MessageRole.USER, content="old question"))
        await store.append("legacy", ChatMessage(role=MessageRole.ASSISTANT, content="old answer"))
        session.updated_at = utcnow() - timedelta(minutes=5)

        result = await orchestrator.chat("openai", ChatRequest(id="legacy", prompt="hi"))

        assert result.status == ChatStatus.COMPLETED
        assert result.model == "gpt-retired"
        assert result.model_substituted is False

        kept = await orchestrator.get_session("openai", "legacy")
        assert kept is session
        assert [m.content for m in kept.messages] == [
            "old question", "old answer", "hi", "Echo: hi"
        ]


class TestTurnFailures:
    """Tests for backend and internal failures."""

    @pytest.mark.asyncio
    async def test_backend_unavailable(self):
        """Test that a failed call keeps only the user message."""
        from providers.base import BackendUnavailableError

        provider = ollama_mock()
        provider.set_next_error(BackendUnavailableError("Cannot connect to ollama"))
        orchestrator = make_orchestrator(("ollama", provider))

        result = await orchestrator.chat("ollama", ChatRequest(id="s1", prompt="hello"))

        assert result.status == ChatStatus.ERROR
        assert result.error_code == ChatErrorCode.BACKEND_UNAVAILABLE
        assert "Cannot connect" in result.error
        assert result.response == ""

        history = await orchestrator.get_history("ollama", "s1")
        assert [(m.role, m.content) for m in history] == [(MessageRole.USER, "hello")]

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        """Test that a malformed reply is reported distinctly."""
        from providers.base import MalformedBackendResponseError

        provider = ollama_mock()
        provider.set_next_error(MalformedBackendResponseError("Empty response from Ollama"))
        orchestrator = make_orchestrator(("ollama", provider))

        result = await orchestrator.generate("ollama", GenerateRequest(prompt="hello"))

        assert result.status == ChatStatus.ERROR
        assert result.error_code == ChatErrorCode.MALFORMED_BACKEND_RESPONSE
        assert result.error == "Empty response from Ollama"

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        """Test that unexpected exceptions become internal errors."""
        provider = ollama_mock()
        provider.set_next_error(RuntimeError("boom"))
        orchestrator = make_orchestrator(("ollama", provider))

        result = await orchestrator.generate("ollama", GenerateRequest(prompt="hello"))

        assert result.status == ChatStatus.ERROR
        assert result.error_code == ChatErrorCode.INTERNAL_ERROR
        assert result.error == "Internal processing error"

    @pytest.mark.asyncio
    async def test_retry_sees_failed_turn(self):
        """Test that the next turn carries the failed user prompt as context."""
        from providers.base import BackendUnavailableError

        provider = ollama_mock()
        provider.set_next_error(BackendUnavailableError("down"))
        orchestrator = make_orchestrator(("ollama", provider))

        await orchestrator.chat("ollama", ChatRequest(id="s1", prompt="first"))
        result = await orchestrator.chat("ollama", ChatRequest(id="s1", prompt="second"))

        assert result.status == ChatStatus.COMPLETED
        assert provider.call_history[1]["messages"] == [
            ("user", "first"),
            ("user", "second"),
        ]


class TestConcurrency:
    """Tests for per-session serialisation."""

    @pytest.mark.asyncio
    async def test_concurrent_turns_same_session(self):
        """Test that overlapping turns on one session never interleave."""
        from providers.mock import MockProvider

        class SlowProvider(MockProvider):
            async def complete(self, session):
                await asyncio.sleep(0.01)
                return await super().complete(session)

        orchestrator = make_orchestrator(("ollama", SlowProvider(default_model="gemma2:2b")))

        results = await asyncio.gather(*[
            orchestrator.chat("ollama", ChatRequest(id="busy", prompt=f"p{i}"))
            for i in range(5)
        ])

        assert all(r.status == ChatStatus.COMPLETED for r in results)

        history = await orchestrator.get_history("ollama", "busy")
        assert len(history) == 10
        for i in range(0, 10, 2):
            assert history[i].role == MessageRole.USER
            assert history[i + 1].role == MessageRole.ASSISTANT
            assert history[i + 1].content == f"Echo: {history[i].content}"

    @pytest.mark.asyncio
    async def test_distinct_sessions_run_in_parallel(self):
        """Test that turns on different sessions are not serialised."""
        from providers.mock import MockProvider

        class BarrierProvider(MockProvider):
            def __init__(self, parties):
                super().__init__(default_model="gemma2:2b")
                self.parties = parties
                self.in_flight = 0
                self.all_in = asyncio.Event()

            async def complete(self, session):
                self.in_flight += 1
                if self.in_flight >= self.parties:
                    self.all_in.set()
                await self.all_in.wait()
                return await super().complete(session)

        orchestrator = make_orchestrator(("ollama", BarrierProvider(parties=3)))

        results = await asyncio.wait_for(
            asyncio.gather(*[
                orchestrator.chat("ollama", ChatRequest(id=f"s{i}", prompt="hi"))
                for i in range(3)
            ]),
            timeout=2
        )

        assert all(r.status == ChatStatus.COMPLETED for r in results)


class TestOrchestratorHelpers:
    """Tests for history, model listing and health."""

    @pytest.mark.asyncio
    async def test_history_unknown_session_is_empty(self):
        """Test that history for an unknown id is empty, not an error."""
        orchestrator = make_orchestrator(("ollama", ollama_mock()))

        assert await orchestrator.get_history("ollama", "nope") == []

    @pytest.mark.asyncio
    async def test_list_models_and_health(self):
        """Test model listing and the health summary."""
        orchestrator = make_orchestrator(("ollama", ollama_mock()), ("openai", openai_mock()))
        await orchestrator.generate("openai", GenerateRequest(prompt="hi"))

        assert await orchestrator.list_models("openai") == ["gpt-3.5-turbo", "gpt-4o"]

        health = await orchestrator.health_check()
        assert health["status"] == "healthy"
        assert health["backends"] == ["ollama", "openai"]
        assert health["sessions"]["openai"]["total_sessions"] == 1
