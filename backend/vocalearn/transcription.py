"""
Transcription Adapter
=====================

Streams one Turn's buffered PCM audio to Deepgram's live recognizer and resolves
to a single finalized transcript.

The recognizer can signal "done" in several ways with different levels of
trust, so finalization is layered:

1. A definitive result (``is_final`` plus ``speech_final`` or ``from_finalize``)
   resolves immediately.
2. An ``UtteranceEnd`` event resolves with whatever text has accumulated.
3. Every transcript update re-arms a short settle timer; if the stream goes
   quiet, the latest transcript wins.
4. A finish timer asks the recognizer to close the stream, and an overall
   ceiling fails the call with ``TranscriptionTimeout``.

Connection-level failures retry the whole stream under a ``RetryPolicy``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import websockets
from pydantic import BaseModel

from .errors import InvalidInput, MissingCredential, TranscriptionTimeout, UnsupportedLanguage, UpstreamTransportError
from .languages import is_supported, recognizer_language, supported_language_codes
from .settings import Settings, settings as default_settings


logger = logging.getLogger(__name__)


class Transcription(BaseModel):
	text: str
	language: str
	attempts: int = 1


class RetryPolicy:
	"""Bounded reconnect policy: ``max_retries`` extra attempts, fixed backoff."""

	def __init__(self, max_retries: int = 2, backoff_seconds: float = 1.0) -> None:
		self.max_retries = max(0, max_retries)
		self.backoff_seconds = backoff_seconds

	@property
	def max_attempts(self) -> int:
		return self.max_retries + 1

	def should_retry(self, attempt: int) -> bool:
		"""``attempt`` is the 1-based number of the attempt that just failed."""
		return attempt < self.max_attempts


class RecognizerError(Exception):
	"""Error event reported by the recognizer inside an open stream."""
	pass


# ============================================================================
# TRANSCRIPT BOOKKEEPING
# ============================================================================

class TranscriptAssembler:
	"""
	Accumulates recognizer results for one stream.

	Final segments are joined permanently. The most recent interim segment is
	only a preview appended to the finals until its own final arrives.
	"""

	def __init__(self) -> None:
		self.finals: List[str] = []
		self.interim: str = ""

	def add(self, transcript: str, is_final: bool) -> None:
		transcript = transcript.strip()
		if is_final:
			if transcript:
				self.finals.append(transcript)
			self.interim = ""
		else:
			self.interim = transcript

	@property
	def accumulated(self) -> str:
		return " ".join(self.finals)

	@property
	def latest(self) -> str:
		parts = self.finals + ([self.interim] if self.interim else [])
		return " ".join(parts)

	@property
	def has_text(self) -> bool:
		return bool(self.latest)

	@staticmethod
	def is_definitive(event: Dict[str, Any]) -> bool:
		return bool(event.get("is_final")) and bool(event.get("speech_final") or event.get("from_finalize"))


def _transcript_of(event: Dict[str, Any]) -> str:
	try:
		return event["channel"]["alternatives"][0].get("transcript") or ""
	except (KeyError, IndexError, TypeError, AttributeError):
		return ""


# ============================================================================
# DEEPGRAM CLIENT
# ============================================================================

class DeepgramTranscriber:
	def __init__(self, settings: Optional[Settings] = None, *, connect: Optional[Callable[..., Any]] = None) -> None:
		self.settings = settings or default_settings
		self._connect = connect or websockets.connect
		self.retry_policy = RetryPolicy(
			self.settings.transcription_max_retries,
			self.settings.transcription_retry_backoff_seconds,
		)

	@property
	def configured(self) -> bool:
		return bool(self.settings.deepgram_api_key)

	def listen_url(self, language: str) -> str:
		params = {
			"model": self.settings.deepgram_model,
			"language": recognizer_language(language),
			"encoding": "linear16",
			"sample_rate": 16000,
			"channels": 1,
			"interim_results": "true",
			"punctuate": "true",
			"endpointing": 150,
			"utterance_end_ms": 1000,
			"vad_events": "true",
		}
		return f"{self.settings.deepgram_url}?{urlencode(params)}"

	async def transcribe(self, chunks: Sequence[bytes], language: str) -> Transcription:
		"""Transcribe one Turn's audio.

		Raises:
			InvalidInput: No audio chunks were supplied
			UnsupportedLanguage: Language code outside the supported table
			MissingCredential: DEEPGRAM_API_KEY is not configured
			TranscriptionTimeout: Nothing resolved before the overall ceiling
			UpstreamTransportError: Every connection attempt failed
		"""
		if not chunks:
			raise InvalidInput("Invalid or empty audio data")
		if not is_supported(language):
			raise UnsupportedLanguage(
				f"Unsupported language: {language}. Supported languages are: {', '.join(supported_language_codes())}"
			)
		if not self.settings.deepgram_api_key:
			raise MissingCredential("Deepgram API key is missing")
		logger.info("Transcribing %d chunks (%d bytes) in %s", len(chunks), sum(len(c) for c in chunks), language)
		try:
			return await asyncio.wait_for(
				self._transcribe_with_retry(list(chunks), language),
				timeout=self.settings.transcription_timeout_seconds,
			)
		except asyncio.TimeoutError as exc:
			logger.error("Deepgram transcription timed out after %.0fs", self.settings.transcription_timeout_seconds)
			raise TranscriptionTimeout("Deepgram transcription timed out") from exc

	async def _transcribe_with_retry(self, chunks: List[bytes], language: str) -> Transcription:
		attempt = 0
		while True:
			attempt += 1
			try:
				text = await self._stream_once(chunks, language)
				return Transcription(text=text, language=language, attempts=attempt)
			except (OSError, websockets.exceptions.WebSocketException, RecognizerError) as exc:
				if not self.retry_policy.should_retry(attempt):
					raise UpstreamTransportError(f"Deepgram STT failed: {exc}") from exc
				logger.warning(
					"Deepgram attempt %d failed (%s), retrying in %.1fs (%d attempts left)",
					attempt,
					exc,
					self.retry_policy.backoff_seconds,
					self.retry_policy.max_attempts - attempt,
				)
				await asyncio.sleep(self.retry_policy.backoff_seconds)

	async def _stream_once(self, chunks: List[bytes], language: str) -> str:
		headers = {"Authorization": f"Token {self.settings.deepgram_api_key}"}
		async with self._connect(self.listen_url(language), additional_headers=headers) as ws:
			for chunk in chunks:
				await ws.send(chunk)
			await ws.send(json.dumps({"type": "Finalize"}))
			return await self._collect(ws)

	async def _collect(self, ws: Any) -> str:
		assembler = TranscriptAssembler()
		loop = asyncio.get_running_loop()
		finish_at = loop.time() + self.settings.transcription_finish_seconds
		settle_at: Optional[float] = None
		close_sent = False

		while True:
			deadlines = [d for d in (settle_at, None if close_sent else finish_at) if d is not None]
			timeout = max(min(deadlines) - loop.time(), 0.0) if deadlines else None
			try:
				message = await asyncio.wait_for(ws.recv(), timeout)
			except asyncio.TimeoutError:
				now = loop.time()
				if settle_at is not None and now >= settle_at:
					logger.info("Transcript settled: %r", assembler.latest)
					return assembler.latest
				if not close_sent and now >= finish_at:
					logger.info("Asking Deepgram to close the stream")
					await ws.send(json.dumps({"type": "CloseStream"}))
					close_sent = True
				continue
			except websockets.exceptions.ConnectionClosedOK:
				if not assembler.has_text:
					logger.warning("Deepgram stream closed without transcription")
				return assembler.latest

			if isinstance(message, (bytes, bytearray)):
				continue
			try:
				event = json.loads(message)
			except ValueError:
				logger.warning("Ignoring non-JSON recognizer message")
				continue

			kind = event.get("type")
			if kind == "Results":
				transcript = _transcript_of(event)
				is_final = bool(event.get("is_final"))
				if transcript:
					assembler.add(transcript, is_final)
					settle_at = loop.time() + self.settings.transcription_settle_seconds
					logger.debug(
						"Deepgram transcript: %s (is_final: %s, speech_final: %s, from_finalize: %s)",
						transcript,
						is_final,
						event.get("speech_final"),
						event.get("from_finalize"),
					)
				if TranscriptAssembler.is_definitive(event):
					if assembler.has_text:
						return assembler.latest
					if event.get("from_finalize"):
						return ""
			elif kind == "UtteranceEnd":
				if assembler.has_text:
					return assembler.latest
			elif kind == "Error":
				raise RecognizerError(event.get("description") or event.get("message") or "recognizer error")
