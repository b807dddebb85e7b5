"""Wiring of call controllers to real devices and the backend."""
import logging
from typing import Optional

from companion.client.audio.devices import SoundDeviceInput, SoundDevicePlayer
from companion.client.audio.recorder import AudioRecorder
from companion.client.audio.vad import VAD_PROFILES
from companion.client.call import CallCallbacks, CallController
from companion.client.config import ClientSettings
from companion.client.opener_cache import CachedOpener, OpenerCache, OpenerFactory
from companion.client.realtime import RealtimeCallClient, RealtimeCallController
from companion.client.transport import TokenProvider, TurnClient
from companion.services.personas.registry import PersonaRegistry, persona_registry

logger = logging.getLogger(__name__)


def build_transport(token_provider: TokenProvider, settings: ClientSettings) -> TurnClient:
    return TurnClient(
        settings.api_base_url,
        token_provider,
        timeout=settings.request_timeout_seconds,
    )


def opener_factory(transport: TurnClient, registry: Optional[PersonaRegistry] = None) -> OpenerFactory:
    """Opener source for ``OpenerCache``: a random persona line synthesized by the backend."""
    registry = registry or persona_registry

    async def _make(persona_id: str) -> CachedOpener:
        text = registry.random_opener(persona_id)
        response = await transport.synthesize_opener(
            persona_id, text, registry.system_prompt(persona_id)
        )
        return CachedOpener(
            persona_id=persona_id,
            text=text,
            audio=response.audio,
            audio_format=response.audio_format,
        )

    return _make


def build_call_controller(
    persona_id: str,
    token_provider: TokenProvider,
    settings: Optional[ClientSettings] = None,
    callbacks: Optional[CallCallbacks] = None,
    opener_cache: Optional[OpenerCache] = None,
    is_premium: bool = False,
) -> CallController:
    """Turn-based call on the default microphone and speaker."""
    settings = settings or ClientSettings()
    transport = build_transport(token_provider, settings)
    profile = VAD_PROFILES[settings.platform]
    recorder = AudioRecorder(
        SoundDeviceInput(sample_rate=settings.sample_rate),
        profile,
        status_interval_seconds=settings.status_interval_seconds,
    )
    logger.info(
        f"[CALL] Building {settings.platform} call for {persona_id} - "
        f"VAD threshold: {profile.speech_threshold_db}dB, fallback: {profile.fallback_seconds}s"
    )
    return CallController(
        persona_id,
        transport,
        recorder,
        SoundDevicePlayer(),
        settings=settings,
        callbacks=callbacks,
        opener_cache=opener_cache or OpenerCache(opener_factory(transport)),
        is_premium=is_premium,
    )


def build_realtime_controller(
    persona_id: str,
    token_provider: TokenProvider,
    settings: Optional[ClientSettings] = None,
    callbacks: Optional[CallCallbacks] = None,
    is_premium: bool = False,
) -> RealtimeCallController:
    """Realtime call streaming the default microphone at the model's sample rate."""
    settings = settings or ClientSettings()
    transport = build_transport(token_provider, settings)
    microphone = SoundDeviceInput(
        sample_rate=settings.realtime_sample_rate,
        block_size=int(settings.realtime_sample_rate * settings.status_interval_seconds),
    )

    def make_client(on_event) -> RealtimeCallClient:
        return RealtimeCallClient(transport, microphone, SoundDevicePlayer(), on_event, settings=settings)

    return RealtimeCallController(
        persona_id,
        make_client,
        transport,
        permission_check=microphone.request_permission,
        settings=settings,
        callbacks=callbacks,
        is_premium=is_premium,
    )
