"""
Model, voice and tool catalogs shared by the API and the voice worker.

Usage:
    from app.catalog import get_compatible_voices, TTS_OPTIONS

    voices = get_compatible_voices("openai/tts-1")   # legacy OpenAI voices
"""

from typing import Any, Dict, List

# ── LLM / STT / TTS ─────────────────────────────────────────

LLM_OPTIONS: List[Dict[str, Any]] = [
    {"id": "gpt-4.1-mini", "name": "GPT-4.1 Mini", "provider": "openai"},
    {"id": "gpt-4.1", "name": "GPT-4.1", "provider": "openai"},
    {"id": "gpt-4o", "name": "GPT-4o", "provider": "openai"},
]

STT_OPTIONS: List[Dict[str, Any]] = [
    {"id": "openai/gpt-4o-transcribe", "name": "GPT-4o Transcribe - Streaming", "provider": "openai"},
    {"id": "openai/whisper-1", "name": "Whisper-1", "provider": "openai"},
    {"id": "deepgram/nova-3", "name": "Nova 3", "provider": "deepgram"},
    {"id": "assemblyai/universal-streaming", "name": "Universal - Streaming", "provider": "assemblyai"},
    {"id": "cartesia/ink-whisper", "name": "Ink-Whisper - Multilingual", "provider": "cartesia"},
]

_OPENAI_TTS_LANGS = ["en", "es", "fr", "de", "it", "pt", "nl", "pl", "ru", "ar", "zh", "ja", "hi", "ko"]
_SONIC_LANGS = ["en", "fr", "de", "es", "pt", "zh", "ja", "hi", "it", "ko", "nl", "pl", "ru", "sv", "tr"]

TTS_OPTIONS: List[Dict[str, Any]] = [
    {"id": "openai/gpt-4o-mini-tts", "name": "GPT-4o Mini TTS - Latest", "provider": "openai", "languages": _OPENAI_TTS_LANGS},
    {"id": "openai/tts-1", "name": "TTS-1 Standard", "provider": "openai", "languages": _OPENAI_TTS_LANGS},
    {"id": "openai/tts-1-hd", "name": "TTS-1 HD - Higher Quality", "provider": "openai", "languages": _OPENAI_TTS_LANGS},
    {"id": "elevenlabs/eleven_turbo_v2_5", "name": "Turbo v2.5", "provider": "elevenlabs", "languages": ["en"]},
    {"id": "elevenlabs/eleven_multilingual_v2", "name": "Multilingual v2", "provider": "elevenlabs",
     "languages": ["en", "hi", "ta", "de", "fr", "es", "ja", "zh", "ko", "pt", "it", "ar", "ru"]},
    {"id": "cartesia/sonic-3", "name": "Sonic 3", "provider": "cartesia", "languages": _SONIC_LANGS + ["bn", "ta", "te", "gu", "kn", "ml", "mr", "pa"]},
    {"id": "cartesia/sonic-2", "name": "Sonic 2", "provider": "cartesia", "languages": _SONIC_LANGS},
    {"id": "cartesia/sonic-turbo", "name": "Sonic Turbo - Fast", "provider": "cartesia", "languages": _SONIC_LANGS},
    {"id": "cartesia/sonic", "name": "Sonic - Original", "provider": "cartesia", "languages": _SONIC_LANGS},
]

# ── Voices ──────────────────────────────────────────────────
# OpenAI voices carry the TTS family they work with: "gpt-4o-mini-tts" or "legacy" (tts-1 / tts-1-hd)

VOICE_OPTIONS: List[Dict[str, Any]] = [
    {"id": "ash", "name": "Ash", "provider": "openai", "language": "en-US", "model": "gpt-4o-mini-tts", "category": "OpenAI"},
    {"id": "ballad", "name": "Ballad", "provider": "openai", "language": "en-US", "model": "gpt-4o-mini-tts", "category": "OpenAI"},
    {"id": "coral", "name": "Coral", "provider": "openai", "language": "en-US", "model": "gpt-4o-mini-tts", "category": "OpenAI"},
    {"id": "sage", "name": "Sage", "provider": "openai", "language": "en-US", "model": "gpt-4o-mini-tts", "category": "OpenAI"},
    {"id": "verse", "name": "Verse", "provider": "openai", "language": "en-US", "model": "gpt-4o-mini-tts", "category": "OpenAI"},
    {"id": "alloy", "name": "Alloy", "provider": "openai", "language": "en-US", "model": "legacy", "category": "OpenAI Legacy"},
    {"id": "echo", "name": "Echo", "provider": "openai", "language": "en-US", "model": "legacy", "category": "OpenAI Legacy"},
    {"id": "fable", "name": "Fable", "provider": "openai", "language": "en-US", "model": "legacy", "category": "OpenAI Legacy"},
    {"id": "onyx", "name": "Onyx", "provider": "openai", "language": "en-US", "model": "legacy", "category": "OpenAI Legacy"},
    {"id": "nova", "name": "Nova", "provider": "openai", "language": "en-US", "model": "legacy", "category": "OpenAI Legacy"},
    {"id": "shimmer", "name": "Shimmer", "provider": "openai", "language": "en-US", "model": "legacy", "category": "OpenAI Legacy"},
    {"id": "cgSgspJ2msm6clMCkdW9", "name": "Jessica", "provider": "elevenlabs", "language": "en-US", "category": "ElevenLabs"},
    {"id": "EXAVITQu4vr4xnSDxMaL", "name": "Bella", "provider": "elevenlabs", "language": "en-US", "category": "ElevenLabs"},
    {"id": "21m00Tcm4TlvDq8ikWAM", "name": "Rachel", "provider": "elevenlabs", "language": "en-US", "category": "ElevenLabs"},
    {"id": "ErXwobaYiN019PkySvjV", "name": "Antoni", "provider": "elevenlabs", "language": "en-US", "category": "ElevenLabs"},
    {"id": "pNInz6obpgDQGcFmaJgB", "name": "Adam", "provider": "elevenlabs", "language": "en-US", "category": "ElevenLabs"},
    {"id": "nPczCjzI2devNBz1zQrb", "name": "Brian", "provider": "elevenlabs", "language": "en-IN", "category": "ElevenLabs"},
    {"id": "onwK4e9ZLuTAKqWW03F9", "name": "Daniel", "provider": "elevenlabs", "language": "hi-IN", "category": "ElevenLabs"},
    {"id": "XB0fDUnXU5powFXDhCwa", "name": "Charlotte", "provider": "elevenlabs", "language": "hi-IN", "category": "ElevenLabs"},
    {"id": "a167e0f3-df7e-4d52-a9c3-f949145efdab", "name": "Customer Support Man", "provider": "cartesia", "language": "en-US", "category": "Cartesia"},
    {"id": "f786b574-daa5-4673-aa0c-cbe3e8534c02", "name": "Katie", "provider": "cartesia", "language": "en-US", "category": "Cartesia"},
    {"id": "694f9389-aac1-45b6-b726-9d9369183238", "name": "Sarah", "provider": "cartesia", "language": "en-US", "category": "Cartesia"},
    {"id": "156fb8d2-335b-4950-9cb3-a2d33befec77", "name": "Helpful Woman", "provider": "cartesia", "language": "en-US", "category": "Cartesia"},
    {"id": "79a125e8-cd45-4c13-8a67-188112f4dd22", "name": "British Lady", "provider": "cartesia", "language": "en-GB", "category": "Cartesia"},
]

OPENAI_NEW_VOICES = frozenset(v["id"] for v in VOICE_OPTIONS if v.get("model") == "gpt-4o-mini-tts")
OPENAI_LEGACY_VOICES = frozenset(v["id"] for v in VOICE_OPTIONS if v.get("model") == "legacy")


def get_compatible_voices(tts_model_id: str) -> List[Dict[str, Any]]:
    """Voices usable with a "provider/model" TTS id."""
    provider, _, model_name = tts_model_id.partition("/")
    voices = [v for v in VOICE_OPTIONS if v["provider"] == provider]
    if provider == "openai":
        if model_name == "gpt-4o-mini-tts":
            voices = [v for v in voices if v.get("model") == "gpt-4o-mini-tts"]
        elif model_name in ("tts-1", "tts-1-hd"):
            voices = [v for v in voices if v.get("model") == "legacy"]
    return voices


# ── Tools ───────────────────────────────────────────────────

class ToolType:
    WEB_SEARCH = "web_search"
    GOOGLE_CALENDAR = "google_calendar"
    END_CALL = "end_call"


# end_call is always enabled and therefore not listed
TOOL_OPTIONS: List[Dict[str, Any]] = [
    {
        "id": ToolType.WEB_SEARCH,
        "name": "Web Search",
        "description": "Search the web for real-time information using Perplexity",
        "requiresAuth": False,
        "requiresApiKey": True,
        "apiKeyEnvVar": "PERPLEXITY_API_KEY",
    },
    {
        "id": ToolType.GOOGLE_CALENDAR,
        "name": "Google Calendar",
        "description": "Read and create calendar events",
        "requiresAuth": True,
        "authProvider": "google",
        "scopes": [
            "https://www.googleapis.com/auth/calendar.readonly",
            "https://www.googleapis.com/auth/calendar.events",
        ],
    },
]

TOOL_IDS = [ToolType.WEB_SEARCH, ToolType.GOOGLE_CALENDAR, ToolType.END_CALL]
