from __future__ import annotations

from typing import Dict, List

# Supported learning/native languages with the TTS voice used for each
SUPPORTED_LANGUAGES: List[Dict[str, str]] = [
	{"code": "es-ES", "name": "Spanish (Spain)", "voiceId": "es-ES-enrique"},
	{"code": "fr-FR", "name": "French (France)", "voiceId": "fr-FR-maxime"},
	{"code": "en-US", "name": "English (US)", "voiceId": "en-US-paul"},
	{"code": "hi-IN", "name": "Hindi (India)", "voiceId": "hi-IN-rahul"},
	{"code": "ja-JP", "name": "Japanese (Japan)", "voiceId": "ja-JP-kenji"},
	{"code": "it-IT", "name": "Italian (Italy)", "voiceId": "it-IT-vincenzo"},
	{"code": "de-DE", "name": "German (Germany)", "voiceId": "de-DE-lia"},
	{"code": "nl-NL", "name": "Dutch (Netherlands)", "voiceId": "nl-NL-dirk"},
	{"code": "pt-BR", "name": "Portuguese (Brazil)", "voiceId": "pt-BR-isadora"},
]

DEFAULT_VOICE = "en-US-paul"
FALLBACK_LANGUAGE = "en-US"

_BY_CODE: Dict[str, Dict[str, str]] = {lang["code"]: lang for lang in SUPPORTED_LANGUAGES}


def supported_language_codes() -> List[str]:
	return [lang["code"] for lang in SUPPORTED_LANGUAGES]


def is_supported(code: str | None) -> bool:
	return bool(code) and code in _BY_CODE


def voice_for(code: str) -> str:
	lang = _BY_CODE.get(code)
	return lang["voiceId"] if lang else DEFAULT_VOICE


def language_name(code: str) -> str:
	"""Display name without the region, e.g. "es-ES" -> "Spanish"."""
	lang = _BY_CODE.get(code)
	if lang:
		return lang["name"].split(" (")[0]
	return code


def recognizer_language(code: str) -> str:
	"""Primary subtag passed to the speech recognizer ("pt-BR" -> "pt")."""
	return code.split("-")[0]
