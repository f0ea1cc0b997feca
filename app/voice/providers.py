"""
Voice providers - STT / TTS / LLM construction from "provider/model" ids.

Agent configs store models as ``provider/model`` strings. Resolution is
split in two steps so the choice can be inspected without touching any
plugin: ``resolve_stt`` / ``resolve_tts`` pick a concrete provider, model
and voice (falling back to the defaults with a warning), and
``build_stt`` / ``build_tts`` turn that choice into a LiveKit plugin.

Usage:
    from app.voice.providers import resolve_tts, build_tts

    choice = resolve_tts("openai/tts-1", voice="ash")   # voice -> alloy
    tts = build_tts(choice)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from livekit.agents import stt as agents_stt
from livekit.plugins import assemblyai, cartesia, deepgram, elevenlabs, openai

from app.catalog import OPENAI_LEGACY_VOICES, OPENAI_NEW_VOICES, VOICE_OPTIONS

logger = logging.getLogger(__name__)

DEFAULT_LLM_MODEL = "gpt-4.1-mini"
DEFAULT_STT_MODEL = "openai/gpt-4o-transcribe"
DEFAULT_TTS_MODEL = "openai/gpt-4o-mini-tts"
DEFAULT_TTS_INSTRUCTIONS = "Speak in a natural, conversational tone."

OPENAI_LEGACY_TTS_MODELS = ("tts-1", "tts-1-hd")
OPENAI_DEFAULT_NEW_VOICE = "ash"
OPENAI_DEFAULT_LEGACY_VOICE = "alloy"

# Non-streaming OpenAI STT models (wrapped in a StreamAdapter)
OPENAI_BATCH_STT_MODELS = ("whisper-1",)


class ProviderKind(str, Enum):
    OPENAI = "openai"
    ELEVENLABS = "elevenlabs"
    CARTESIA = "cartesia"
    DEEPGRAM = "deepgram"
    ASSEMBLYAI = "assemblyai"


@dataclass(frozen=True)
class ModelRef:
    """A parsed ``provider/model`` id."""
    provider: ProviderKind
    model: str

    @classmethod
    def parse(cls, model_id: str) -> "ModelRef":
        """Parse ``provider/model``. Raises ValueError for unknown providers."""
        provider, sep, model = (model_id or "").partition("/")
        if not sep or not model:
            raise ValueError(f"Model id must look like provider/model: {model_id!r}")
        return cls(provider=ProviderKind(provider), model=model)

    def __str__(self) -> str:
        return f"{self.provider.value}/{self.model}"


@dataclass(frozen=True)
class TTSChoice:
    ref: ModelRef
    voice: Optional[str] = None
    instructions: Optional[str] = None


@dataclass(frozen=True)
class STTChoice:
    ref: ModelRef
    needs_stream_adapter: bool = False


def _parse_or_default(model_id: str, default_id: str, kind: str) -> ModelRef:
    try:
        return ModelRef.parse(model_id)
    except ValueError:
        logger.warning(f"[PROVIDERS] {kind} model {model_id!r} not supported, using {default_id}")
        return ModelRef.parse(default_id)


def _provider_voices(provider: ProviderKind):
    return [v["id"] for v in VOICE_OPTIONS if v["provider"] == provider.value]


def resolve_openai_voice(model: str, voice: Optional[str]) -> str:
    """Voice compatible with an OpenAI TTS model; incompatible voices fall back to the model default."""
    if model in OPENAI_LEGACY_TTS_MODELS:
        return voice if voice in OPENAI_LEGACY_VOICES else OPENAI_DEFAULT_LEGACY_VOICE
    return voice if voice in OPENAI_NEW_VOICES else OPENAI_DEFAULT_NEW_VOICE


def resolve_tts(model_id: str, voice: Optional[str] = None, voice_instructions: Optional[str] = None) -> TTSChoice:
    ref = _parse_or_default(model_id, DEFAULT_TTS_MODEL, "TTS")

    if ref.provider == ProviderKind.OPENAI:
        if ref.model not in OPENAI_LEGACY_TTS_MODELS and ref.model != "gpt-4o-mini-tts":
            logger.warning(f"[PROVIDERS] Unknown OpenAI TTS model {ref.model}, defaulting to gpt-4o-mini-tts")
            ref = ModelRef(ProviderKind.OPENAI, "gpt-4o-mini-tts")
        resolved = resolve_openai_voice(ref.model, voice)
        if resolved != voice:
            logger.info(f"[PROVIDERS] Voice {voice!r} not available for {ref}, using {resolved}")
        if ref.model in OPENAI_LEGACY_TTS_MODELS:
            return TTSChoice(ref=ref, voice=resolved)
        return TTSChoice(ref=ref, voice=resolved, instructions=voice_instructions or DEFAULT_TTS_INSTRUCTIONS)

    if ref.provider in (ProviderKind.ELEVENLABS, ProviderKind.CARTESIA):
        voices = _provider_voices(ref.provider)
        if voice not in voices:
            logger.info(f"[PROVIDERS] Voice {voice!r} not available for {ref}, using {voices[0]}")
            voice = voices[0]
        return TTSChoice(ref=ref, voice=voice)

    logger.warning(f"[PROVIDERS] {ref.provider.value} has no TTS, using {DEFAULT_TTS_MODEL}")
    return resolve_tts(DEFAULT_TTS_MODEL, voice, voice_instructions)


def resolve_stt(model_id: str) -> STTChoice:
    ref = _parse_or_default(model_id, DEFAULT_STT_MODEL, "STT")
    if ref.provider == ProviderKind.ELEVENLABS:
        logger.warning(f"[PROVIDERS] {ref.provider.value} has no STT, using {DEFAULT_STT_MODEL}")
        ref = ModelRef.parse(DEFAULT_STT_MODEL)
    needs_adapter = ref.provider == ProviderKind.OPENAI and ref.model in OPENAI_BATCH_STT_MODELS
    return STTChoice(ref=ref, needs_stream_adapter=needs_adapter)


# ── Factories ──────────────────────────────────────────────

def _openai_tts(choice: TTSChoice):
    if choice.instructions:
        return openai.TTS(model=choice.ref.model, voice=choice.voice, instructions=choice.instructions)
    return openai.TTS(model=choice.ref.model, voice=choice.voice)


def _elevenlabs_tts(choice: TTSChoice):
    return elevenlabs.TTS(model=choice.ref.model, voice_id=choice.voice)


def _cartesia_tts(choice: TTSChoice):
    return cartesia.TTS(model=choice.ref.model, voice=choice.voice)


TTS_FACTORIES: Dict[ProviderKind, Callable[[TTSChoice], object]] = {
    ProviderKind.OPENAI: _openai_tts,
    ProviderKind.ELEVENLABS: _elevenlabs_tts,
    ProviderKind.CARTESIA: _cartesia_tts,
}

STT_FACTORIES: Dict[ProviderKind, Callable[[ModelRef], object]] = {
    ProviderKind.OPENAI: lambda ref: openai.STT(model=ref.model),
    ProviderKind.DEEPGRAM: lambda ref: deepgram.STT(model=ref.model),
    ProviderKind.ASSEMBLYAI: lambda ref: assemblyai.STT(),
    ProviderKind.CARTESIA: lambda ref: cartesia.STT(model=ref.model),
}


def build_tts(choice: TTSChoice):
    logger.info(f"[PROVIDERS] TTS {choice.ref} voice={choice.voice}")
    return TTS_FACTORIES[choice.ref.provider](choice)


def build_stt(choice: STTChoice, vad=None):
    """Build the STT plugin; batch models are wrapped with ``vad`` to stream."""
    logger.info(f"[PROVIDERS] STT {choice.ref}")
    plugin = STT_FACTORIES[choice.ref.provider](choice.ref)
    if choice.needs_stream_adapter:
        if vad is None:
            raise ValueError(f"{choice.ref} needs a VAD to stream")
        return agents_stt.StreamAdapter(stt=plugin, vad=vad)
    return plugin


def build_llm(model: Optional[str]):
    # Stored LLM ids are bare OpenAI model names
    name = model or DEFAULT_LLM_MODEL
    if "/" in name:
        name = name.split("/", 1)[1]
    return openai.LLM(model=name)
