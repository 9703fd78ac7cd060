from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from .languages import voice_for
from .protocol import AudioMessage, ErrorMessage, OutboundMessage
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class Outbox(Protocol):
	async def send(self, message: OutboundMessage) -> None: ...


class SynthesisFailed(Exception):
	pass


class SpeechSynthesizer:
	"""Murf text-to-speech. Results go straight to the client as audio URL events."""

	def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None) -> None:
		self.settings = settings or default_settings
		self._client = client or httpx.AsyncClient(timeout=30)

	@property
	def configured(self) -> bool:
		return bool(self.settings.murf_api_key)

	async def synthesize(self, outbox: Outbox, text: str, language: str, label: str = "correction") -> str:
		"""Synthesize ``text`` with the voice mapped to ``language``.

		Exactly one event reaches the client per call: an ``audio`` event with
		the hosted URL on success, or an ``{error}`` event on failure. Failures
		never raise; the caller gets ``""`` and carries on without audio.
		"""
		try:
			url = await self._generate(text, language)
		except (SynthesisFailed, httpx.HTTPError, ValueError) as err:
			logger.error("Murf HTTP TTS failed: %s", err)
			await outbox.send(ErrorMessage(error=f"TTS Error: {err}"))
			return ""
		logger.info("Sending %s audio URL to client", label)
		await outbox.send(AudioMessage(audio_url=url, label=label))
		return url

	async def _generate(self, text: str, language: str) -> str:
		if not text or not text.strip():
			raise SynthesisFailed("No text to synthesize")
		if not self.settings.murf_api_key:
			raise SynthesisFailed("Murf API key is missing")
		payload = {
			"text": text,
			"voiceId": voice_for(language),
			"format": "WAV",
			"sampleRate": 44100,
			"channelType": "MONO",
			"style": "Conversational",
			"rate": 0,
			"pitch": 0,
			"variation": 1,
		}
		headers = {"api-key": self.settings.murf_api_key, "Content-Type": "application/json"}
		r = await self._client.post(self.settings.murf_url, headers=headers, json=payload)
		r.raise_for_status()
		data = r.json()
		audio_file = data.get("audioFile") if isinstance(data, dict) else None
		if not audio_file:
			raise SynthesisFailed("No audio URL returned from Murf")
		return audio_file

	async def aclose(self) -> None:
		await self._client.aclose()
