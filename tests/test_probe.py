# tests/test_probe.py
import asyncio

import pytest

from stackprobe.config import ScanConfig
from stackprobe.probe import (
    InteractionProbe,
    ProbeResult,
    approximate_token_count,
    compute_tps,
    find_chat_input,
    infer_model,
    is_streaming_response,
    match_payload_signature,
    provider_from_url,
)
from stackprobe.signatures import REASONING_MODEL_LABEL

from fakes import FakeContext, FakePage, FakeResponse


OPENAI_STREAM = (
    'data: {"id":"chatcmpl-1","object":"chat.completion.chunk","choices":[{"delta":{"content":"Hello"}}]}\n\n'
    'data: {"id":"chatcmpl-1","object":"chat.completion.chunk","choices":[{"delta":{"content":" there!"}}]}\n\n'
    "data: [DONE]\n\n"
)

CHAT_ELEMENTS = {
    'textarea[placeholder*="message" i]': True,
    'button[type="submit"]': True,
}


class TestInferModel:
    """Tests for speed-band model inference."""

    def test_gpt4o_band(self):
        assert infer_model(80, 200) == "OpenAI - gpt-4o"

    def test_reasoning_override_checked_first(self):
        assert infer_model(80, 4000) == REASONING_MODEL_LABEL

    def test_slow_start_but_slow_stream_uses_bands(self):
        assert infer_model(30, 4000) == "OpenAI - gpt-4-turbo"

    def test_band_lower_bound_inclusive(self):
        assert infer_model(100, 100) == "Anthropic - claude-3-haiku"

    def test_fastest_band(self):
        assert infer_model(400, 100) == "Groq - Llama 3 70B"

    def test_no_band(self):
        assert infer_model(2, 100) is None
        assert infer_model(0, 0) is None


class TestMeasurement:
    """Tests for token and throughput arithmetic."""

    def test_token_count_rounds_up(self):
        assert approximate_token_count("") == 0
        assert approximate_token_count("abcd") == 1
        assert approximate_token_count("abcde") == 2

    def test_tps_over_generation_window(self):
        assert compute_tps(100, 2000, 1000) == 100.0

    def test_tps_zero_when_window_empty(self):
        assert compute_tps(10, 500, 500) == 0.0
        assert compute_tps(10, 400, 500) == 0.0


class TestProviderSignals:
    """Tests for payload signatures and URL-based provider inference."""

    @pytest.mark.parametrize("body,provider", [
        ('{"type":"content_block_delta","delta":{"text":"Hi"}}', "Anthropic"),
        ('{"object": "chat.completion", "choices": []}', "OpenAI"),
        ('{"candidates": [{"content": {"parts": []}}]}', "Google Gemini"),
        ('{"event_type":"text-generation","text":"Hi"}', "Cohere"),
        ('0:"Hello"\n0:" world"', "Vercel AI SDK"),
    ])
    def test_payload_signatures(self, body, provider):
        assert match_payload_signature(body) == provider

    def test_unknown_payload(self):
        assert match_payload_signature('{"reply": "Hello"}') is None

    def test_provider_from_url(self):
        assert provider_from_url("https://api.anthropic.com/v1/messages") == "Anthropic"
        assert provider_from_url("https://my-res.openai.azure.com/openai/deployments/x") == "OpenAI (Azure)"
        assert provider_from_url("https://chat.example.com/v1/chat/completions") == "OpenAI-compatible"
        assert provider_from_url("https://example.com/api/chat") is None

    def test_streaming_content_types(self):
        assert is_streaming_response("text/event-stream; charset=utf-8")
        assert is_streaming_response("application/json")
        assert not is_streaming_response("text/html")
        assert not is_streaming_response(None)


class TestFindChatInput:
    """Tests for chat input discovery."""

    @pytest.mark.asyncio
    async def test_first_visible_selector_wins(self):
        page = FakePage(elements={
            'input[placeholder*="message" i]': False,
            'textarea[placeholder*="ask" i]': True,
        })
        assert await find_chat_input(page) == 'textarea[placeholder*="ask" i]'

    @pytest.mark.asyncio
    async def test_no_input(self):
        assert await find_chat_input(FakePage()) is None


class TestInteract:
    """Tests for the chat interaction on a loaded page."""

    @pytest.fixture
    def probe(self):
        return InteractionProbe(ScanConfig(probe_window_seconds=0, probe_settle_seconds=0))

    @pytest.mark.asyncio
    async def test_streamed_openai_response(self, probe):
        page = FakePage(
            elements=CHAT_ELEMENTS,
            chat_responses=[
                FakeResponse("https://chat.example.com/static/logo.svg", headers={"content-type": "image/svg+xml"}),
                FakeResponse(
                    "https://api.openai.com/v1/chat/completions",
                    headers={"Content-Type": "text/event-stream"},
                    body=OPENAI_STREAM,
                    method="POST",
                ),
            ],
        )

        result = await probe.interact(page, "https://chat.example.com")

        assert result.chat_found
        assert result.provider == "OpenAI"
        assert result.payload_signatures == ["OpenAI"]
        assert page.filled == {'textarea[placeholder*="message" i]': "Hi"}
        assert page.clicked == ['button[type="submit"]']
        assert len(result.network_calls) == 2
        assert result.network_calls[1]["method"] == "POST"

        diagnostics = result.diagnostics
        assert diagnostics is not None
        assert diagnostics.prompt_sent == "Hi"
        assert diagnostics.token_count == approximate_token_count(OPENAI_STREAM)
        assert diagnostics.chat_input_selector == 'textarea[placeholder*="message" i]'
        assert diagnostics.send_button_selector == 'button[type="submit"]'
        assert len(diagnostics.response_received) <= 500
        assert diagnostics.ttft >= 0

    @pytest.mark.asyncio
    async def test_payload_signature_beats_url(self, probe):
        page = FakePage(
            elements=CHAT_ELEMENTS,
            chat_responses=[FakeResponse(
                "https://chat.example.com/v1/chat/completions",
                headers={"content-type": "text/event-stream"},
                body='event: content_block_delta\ndata: {"type":"content_block_delta"}\n\n',
            )],
        )
        result = await probe.interact(page, "https://chat.example.com")
        assert result.provider == "Anthropic"
        assert result.payload_signatures == ["Anthropic"]

    @pytest.mark.asyncio
    async def test_later_api_host_does_not_replace_payload_signature(self, probe):
        page = FakePage(
            elements=CHAT_ELEMENTS,
            chat_responses=[
                FakeResponse(
                    "https://chat.example.com/api/chat",
                    headers={"content-type": "text/event-stream"},
                    body='data: {"type":"content_block_delta"}\n\n',
                ),
                FakeResponse(
                    "https://api.openai.com/v1/moderations",
                    headers={"content-type": "text/plain"},
                    body="ok",
                ),
            ],
        )

        result = await probe.interact(page, "https://chat.example.com")

        assert result.provider == "Anthropic"
        assert result.payload_signatures == ["Anthropic"]

    @pytest.mark.asyncio
    async def test_api_host_used_without_payload_signature(self, probe):
        page = FakePage(
            elements=CHAT_ELEMENTS,
            chat_responses=[
                FakeResponse("https://chat.example.com/v1/chat/completions",
                             headers={"content-type": "application/json"}, body="{}"),
                FakeResponse("https://api.anthropic.com/v1/messages",
                             headers={"content-type": "application/json"}, body="{}"),
            ],
        )

        result = await probe.interact(page, "https://chat.example.com")

        assert result.provider == "Anthropic"
        assert result.payload_signatures == []

    @pytest.mark.asyncio
    async def test_enter_used_without_send_button(self, probe):
        page = FakePage(elements={'input[placeholder*="ask" i]': True})
        result = await probe.interact(page, "https://example.com")
        assert result.chat_found
        assert page.keyboard.pressed == ["Enter"]
        assert result.diagnostics is None

    @pytest.mark.asyncio
    async def test_no_chat_input(self, probe):
        result = await probe.interact(FakePage(), "https://example.com")
        assert not result.chat_found
        assert not result.has_interaction
        assert result.provider is None

    @pytest.mark.asyncio
    async def test_non_streaming_responses_give_no_diagnostics(self, probe):
        page = FakePage(
            elements=CHAT_ELEMENTS,
            chat_responses=[FakeResponse("https://example.com/track", headers={"content-type": "text/plain"},
                                         body="ok")],
        )
        result = await probe.interact(page, "https://example.com")
        assert result.chat_found
        assert result.diagnostics is None
        assert result.inferred_model is None


class _FakeScanner:
    """Stands in for BrowserScanner as an async context manager."""

    def __init__(self, context, delay=0.0):
        self.context = context
        self.delay = delay

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def new_context(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.context


class TestRun:
    """Tests for the full probe run."""

    @pytest.mark.asyncio
    async def test_run_closes_context(self, monkeypatch):
        page = FakePage(elements=CHAT_ELEMENTS, chat_responses=[FakeResponse(
            "https://api.anthropic.com/v1/messages",
            headers={"content-type": "text/event-stream"},
            body='data: {"type":"message_start"}\n\n',
        )])
        context = FakeContext(page)
        monkeypatch.setattr("stackprobe.probe.BrowserScanner", lambda config: _FakeScanner(context))

        probe = InteractionProbe(ScanConfig(probe_window_seconds=0, probe_settle_seconds=0))
        result = await probe.run("https://chat.example.com")

        assert isinstance(result, ProbeResult)
        assert result.error is None
        assert result.provider == "Anthropic"
        assert context.closed

    @pytest.mark.asyncio
    async def test_run_never_raises(self, monkeypatch):
        def broken(config):
            raise RuntimeError("browser crashed")

        monkeypatch.setattr("stackprobe.probe.BrowserScanner", broken)
        result = await InteractionProbe().run("https://example.com")
        assert result.error == "browser crashed"
        assert not result.chat_found

    @pytest.mark.asyncio
    async def test_hard_timeout(self, monkeypatch):
        context = FakeContext(FakePage())
        monkeypatch.setattr("stackprobe.probe.BrowserScanner", lambda config: _FakeScanner(context, delay=5))
        monkeypatch.setattr(InteractionProbe, "hard_timeout", property(lambda self: 0.01))

        result = await InteractionProbe().run("https://example.com")
        assert result.error == "TimeoutError"
