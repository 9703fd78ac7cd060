from __future__ import annotations

from typing import Optional

from .feedback import FeedbackGenerator
from .gemini_client import GeminiClient
from .rate_limiter import RateLimiter
from .settings import Settings, settings as default_settings
from .speech import SpeechSynthesizer
from .transcription import DeepgramTranscriber


class TutorServices:
	"""The three upstream collaborators plus the settings they share.

	One instance per process: the language-model rate limiter inside
	``feedback`` is shared by every session.
	"""

	def __init__(
		self,
		settings: Settings,
		transcriber: DeepgramTranscriber,
		feedback: FeedbackGenerator,
		speech: SpeechSynthesizer,
		model: Optional[GeminiClient] = None,
	) -> None:
		self.settings = settings
		self.transcriber = transcriber
		self.feedback = feedback
		self.speech = speech
		self.model = model

	@classmethod
	def from_settings(cls, settings: Optional[Settings] = None) -> "TutorServices":
		settings = settings or default_settings
		model = GeminiClient(settings=settings)
		limiter = RateLimiter(
			min_interval=settings.llm_min_interval_seconds,
			reservoir=settings.llm_reservoir,
			refresh_interval=settings.llm_reservoir_refresh_seconds,
		)
		return cls(
			settings=settings,
			transcriber=DeepgramTranscriber(settings),
			feedback=FeedbackGenerator(model, limiter, settings),
			speech=SpeechSynthesizer(settings),
			model=model,
		)

	def status(self) -> dict:
		return {
			"deepgram_configured": self.transcriber.configured,
			"gemini_configured": self.model is not None and self.model.configured,
			"murf_configured": self.speech.configured,
		}

	async def aclose(self) -> None:
		if self.model is not None:
			await self.model.aclose()
		await self.speech.aclose()
