"""Unit tests for client wiring."""
import pytest

from companion.client.audio.devices import SoundDeviceInput
from companion.client.call import CallController
from companion.client.config import ClientSettings
from companion.client.factory import build_call_controller, build_realtime_controller, opener_factory
from companion.client.opener_cache import OpenerCache
from companion.client.realtime import RealtimeCallController
from companion.client.transport import TurnResponse


async def token_provider():
    return "jwt"


class FakeTransport:
    def __init__(self):
        self.calls = []

    async def synthesize_opener(self, persona_id, opener_text, system_prompt=""):
        self.calls.append((persona_id, opener_text))
        return TurnResponse(success=True, assistant_response=opener_text, audio_base64="aGk=", audio_format="mp3")


class TestClientFactory:
    @pytest.mark.asyncio
    async def test_opener_factory_fills_cache(self):
        transport = FakeTransport()
        cache = OpenerCache(opener_factory(transport))

        await cache.prefetch("ira")
        entry = cache.take("ira")

        assert entry.audio == b"hi"
        assert transport.calls == [("ira", entry.text)]

    def test_build_call_controller_uses_platform_profile(self):
        settings = ClientSettings(platform="android")

        controller = build_call_controller("preethi", token_provider, settings=settings)

        assert isinstance(controller, CallController)
        assert controller.recorder.profile.speech_threshold_db == -35.0
        assert controller.recorder.profile.fallback_seconds == 5.0
        assert isinstance(controller.recorder.device, SoundDeviceInput)
        assert controller.opener_cache is not None

    def test_build_realtime_controller(self):
        controller = build_realtime_controller("riya", token_provider, settings=ClientSettings())

        assert isinstance(controller, RealtimeCallController)
        assert controller.client.input_device.sample_rate == 24000
