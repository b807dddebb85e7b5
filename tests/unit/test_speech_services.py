"""Unit tests for the transcription, generation and synthesis providers."""
import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from companion.core.errors import (
    GenerationFailure,
    SynthesisFailure,
    TranscriptionFailure,
    UpstreamQuotaExhausted,
)
from companion.services.agent.generator import ReplyGenerator, build_messages
from companion.services.personas.voices import VOICE_PROFILES, PersonaId
from companion.services.speech.stt import SpeechToTextService
from companion.services.speech.tts import SpeechSynthesizer, join_audio_segments
from companion.services.turn.models import HistoryMessage

OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def quota_error():
    return openai.RateLimitError(
        "You exceeded your current quota",
        response=httpx.Response(429, request=OPENAI_REQUEST),
        body={"code": "insufficient_quota", "message": "quota"},
    )


def connection_error():
    return openai.APIConnectionError(request=OPENAI_REQUEST)


def openai_client():
    client = Mock()
    client.audio.transcriptions.create = AsyncMock()
    client.chat.completions.create = AsyncMock()
    return client


class FakeStream:
    """Async iterable of chat completion chunks."""

    def __init__(self, deltas):
        self.deltas = deltas

    async def __aiter__(self):
        for delta in self.deltas:
            if delta is None:
                yield SimpleNamespace(choices=[])
            else:
                yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=delta))])


class TestSpeechToText:
    """Test Whisper transcription."""

    @pytest.mark.asyncio
    async def test_transcribe_strips_text(self):
        client = openai_client()
        client.audio.transcriptions.create.return_value = SimpleNamespace(text="  hello there \n")
        service = SpeechToTextService(client=client)

        assert await service.transcribe_audio(b"data", "m4a") == "hello there"

        kwargs = client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["file"] == ("audio.m4a", b"data", "audio/mp4")
        assert kwargs["model"] == "whisper-1"

    @pytest.mark.asyncio
    async def test_pcm16_uploaded_as_wav(self):
        client = openai_client()
        client.audio.transcriptions.create.return_value = SimpleNamespace(text="hi")
        service = SpeechToTextService(client=client)

        await service.transcribe_audio(b"pcm", "pcm16")

        kwargs = client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["file"] == ("audio.wav", b"pcm", "audio/wav")

    @pytest.mark.asyncio
    async def test_quota_error_mapped(self):
        client = openai_client()
        client.audio.transcriptions.create.side_effect = quota_error()
        service = SpeechToTextService(client=client)

        with pytest.raises(UpstreamQuotaExhausted):
            await service.transcribe_audio(b"data", "wav")

    @pytest.mark.asyncio
    async def test_other_error_mapped(self):
        client = openai_client()
        client.audio.transcriptions.create.side_effect = connection_error()
        service = SpeechToTextService(client=client)

        with pytest.raises(TranscriptionFailure):
            await service.transcribe_audio(b"data", "wav")


class TestReplyGenerator:
    """Test streamed reply generation."""

    def test_build_messages_keeps_recent_history(self):
        history = [HistoryMessage(role="user", content=f"m{i}") for i in range(12)]

        messages = build_messages("prompt", history, "latest", max_history=10)

        assert messages[0] == {"role": "system", "content": "prompt"}
        assert messages[1]["content"] == "m2"
        assert messages[-1] == {"role": "user", "content": "latest"}
        assert len(messages) == 12

    def test_build_messages_without_history(self):
        messages = build_messages("prompt", [HistoryMessage(role="user", content="x")], "hi", max_history=0)
        assert messages == [
            {"role": "system", "content": "prompt"},
            {"role": "user", "content": "hi"},
        ]

    @pytest.mark.asyncio
    async def test_stream_yields_non_empty_deltas(self):
        client = openai_client()
        client.chat.completions.create.return_value = FakeStream(["Hi", None, "", " there."])
        generator = ReplyGenerator(client=client)

        tokens = [token async for token in generator.stream_reply("prompt", [], "hello")]

        assert tokens == ["Hi", " there."]
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["max_tokens"] == 80

    @pytest.mark.asyncio
    async def test_quota_error_mapped(self):
        client = openai_client()
        client.chat.completions.create.side_effect = quota_error()
        generator = ReplyGenerator(client=client)

        with pytest.raises(UpstreamQuotaExhausted):
            [token async for token in generator.stream_reply("prompt", [], "hello")]

    @pytest.mark.asyncio
    async def test_other_error_mapped(self):
        client = openai_client()
        client.chat.completions.create.side_effect = connection_error()
        generator = ReplyGenerator(client=client)

        with pytest.raises(GenerationFailure):
            [token async for token in generator.stream_reply("prompt", [], "hello")]


class TestSpeechSynthesizer:
    """Test provider dispatch by voice profile."""

    @pytest.mark.asyncio
    async def test_elevenlabs_request(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["xi-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"ID3-mp3")

        synthesizer = SpeechSynthesizer(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            elevenlabs_api_key="el-key",
        )
        voice = VOICE_PROFILES[PersonaId.PREETHI]

        audio = await synthesizer.synthesize_speech("Hello!", voice)

        assert audio == b"ID3-mp3"
        assert seen["url"].endswith(f"/v1/text-to-speech/{voice.voice_id}")
        assert seen["key"] == "el-key"
        assert seen["body"]["text"] == "Hello!"
        assert seen["body"]["voice_settings"]["stability"] == voice.stability
        await synthesizer.aclose()

    @pytest.mark.asyncio
    async def test_sarvam_decodes_base64(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["speaker"] == "manisha"
            assert body["target_language_code"] == "te-IN"
            assert request.headers["api-subscription-key"] == "sv-key"
            return httpx.Response(200, json={"audios": [base64.b64encode(b"RIFF-wav").decode()]})

        synthesizer = SpeechSynthesizer(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            sarvam_api_key="sv-key",
        )

        audio = await synthesizer.synthesize_speech("Em chestunnav?", VOICE_PROFILES[PersonaId.RIYA])

        assert audio == b"RIFF-wav"

    @pytest.mark.asyncio
    async def test_provider_error_status(self):
        synthesizer = SpeechSynthesizer(
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
            )
        )

        with pytest.raises(SynthesisFailure):
            await synthesizer.synthesize_speech("Hello!", VOICE_PROFILES[PersonaId.IRA])

    @pytest.mark.asyncio
    async def test_sarvam_without_audio(self):
        synthesizer = SpeechSynthesizer(
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"audios": []}))
            )
        )

        with pytest.raises(SynthesisFailure):
            await synthesizer.synthesize_speech("Hello!", VOICE_PROFILES[PersonaId.RIYA])

    @pytest.mark.asyncio
    async def test_transport_error_mapped(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        synthesizer = SpeechSynthesizer(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        with pytest.raises(SynthesisFailure):
            await synthesizer.synthesize_speech("Hello!", VOICE_PROFILES[PersonaId.PREETHI])

    def test_join_mp3_concatenates(self):
        assert join_audio_segments([b"a", b"b"], "mp3") == b"ab"
        assert join_audio_segments([], "mp3") == b""
