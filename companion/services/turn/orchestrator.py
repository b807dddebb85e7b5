"""Voice turn orchestration: transcription, streamed reply, pipelined synthesis."""
import asyncio
import logging
import time
from typing import List, Optional, Sequence

from companion.core.errors import GenerationFailure, SynthesisFailure, TurnFailure
from companion.services.agent.generator import ReplyGenerator
from companion.services.personas.registry import PersonaRegistry, persona_registry
from companion.services.personas.voices import VoiceProfile, output_format
from companion.services.speech.filters import is_garbage_transcript
from companion.services.speech.stt import SpeechToTextService
from companion.services.speech.tts import SpeechSynthesizer, join_audio_segments
from companion.services.turn.models import HistoryMessage, LatencyBreakdown, TurnResult
from companion.services.turn.sentences import SentenceSplitter

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


async def _cancel_all(tasks: Sequence[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class TurnOrchestrator:
    """Runs one conversation turn end to end."""

    def __init__(
        self,
        stt: Optional[SpeechToTextService] = None,
        generator: Optional[ReplyGenerator] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        registry: Optional[PersonaRegistry] = None,
    ):
        self.stt = stt or SpeechToTextService()
        self.generator = generator or ReplyGenerator()
        self.synthesizer = synthesizer or SpeechSynthesizer()
        self.registry = registry or persona_registry

    async def process_turn(
        self,
        audio: bytes,
        audio_format: str,
        persona_id: str,
        system_prompt: str,
        history: Sequence[HistoryMessage],
    ) -> TurnResult:
        """
        Process one user utterance into a spoken reply.

        Sentences are handed to synthesis as soon as the token stream closes
        them, so speech for the first sentence is produced while the model is
        still generating the rest.

        Raises:
            TurnFailure: transcription, generation or synthesis failed
        """
        persona = self.registry.get_persona(persona_id)
        voice = persona.voice
        reply_format = output_format(voice)
        turn_start = time.perf_counter()

        stt_start = time.perf_counter()
        transcript = await self.stt.transcribe_audio(audio, audio_format)
        stt_ms = _elapsed_ms(stt_start)
        logger.info(f"[VOICE TURN] Transcript ({stt_ms}ms): '{transcript[:100]}'")

        if is_garbage_transcript(transcript):
            logger.info(f"[VOICE TURN] Filtered transcript as no speech: '{transcript}'")
            return TurnResult(
                audio_format=reply_format,
                latency=LatencyBreakdown(stt=stt_ms, total=_elapsed_ms(turn_start)),
            )

        prompt = system_prompt or persona.system_prompt
        llm_start = time.perf_counter()
        splitter = SentenceSplitter()
        tasks: List[asyncio.Task] = []
        try:
            async for token in self.generator.stream_reply(prompt, history, transcript):
                sentence = splitter.feed(token)
                if sentence:
                    logger.debug(f"[VOICE TURN] Dispatching sentence {len(tasks) + 1}: '{sentence}'")
                    tasks.append(asyncio.create_task(self._synthesize(sentence, voice)))
            tail = splitter.flush()
            if tail:
                tasks.append(asyncio.create_task(self._synthesize(tail, voice)))
        except BaseException:
            await _cancel_all(tasks)
            raise
        llm_ms = _elapsed_ms(llm_start)

        reply_text = splitter.full_text.strip()
        if not reply_text:
            raise GenerationFailure("Model returned an empty reply")

        tts_start = time.perf_counter()
        segments = await self._collect(tasks)
        tts_ms = _elapsed_ms(tts_start)

        latency = LatencyBreakdown(
            stt=stt_ms, llm=llm_ms, tts=tts_ms, total=_elapsed_ms(turn_start)
        )
        logger.info(
            f"[VOICE TURN] Reply ready - sentences: {len(segments)}, "
            f"latency: stt={latency.stt}ms llm={latency.llm}ms "
            f"tts={latency.tts}ms total={latency.total}ms"
        )
        return TurnResult(
            transcript=transcript,
            reply_text=reply_text,
            reply_audio=join_audio_segments(segments, reply_format),
            audio_format=reply_format,
            latency=latency,
        )

    async def synthesize_opener(self, persona_id: str, opener_text: Optional[str] = None) -> TurnResult:
        """Speak a call opener without transcription or generation."""
        persona = self.registry.get_persona(persona_id)
        text = (opener_text or "").strip() or self.registry.random_opener(persona_id)
        voice = persona.voice
        start = time.perf_counter()
        audio = await self._synthesize(text, voice)
        tts_ms = _elapsed_ms(start)
        logger.info(f"[VOICE TURN] Opener synthesized for {persona_id} ({tts_ms}ms)")
        return TurnResult(
            reply_text=text,
            reply_audio=audio,
            audio_format=output_format(voice),
            latency=LatencyBreakdown(tts=tts_ms, total=tts_ms),
        )

    async def _synthesize(self, sentence: str, voice: VoiceProfile) -> bytes:
        try:
            return await self.synthesizer.synthesize_speech(sentence, voice)
        except TurnFailure:
            raise
        except Exception as e:
            logger.error(f"[VOICE TURN] Synthesis error: {type(e).__name__}: {str(e)}")
            raise SynthesisFailure("Speech synthesis failed") from e

    async def _collect(self, tasks: Sequence[asyncio.Task]) -> List[bytes]:
        """Await every segment; results keep dispatch order."""
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            await _cancel_all(tasks)
            raise
