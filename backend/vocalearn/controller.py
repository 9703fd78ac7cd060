"""
Mode Controller
===============

Routes decoded inbound messages for one session and runs the long actions
(Turns, quiz questions, summaries, the dialogue opening line) as asyncio tasks
so the connection keeps reading frames while upstream calls are in flight.

Per session at most one gated action runs at a time; a second one arriving
meanwhile is logged and dropped, never queued. ``end_quiz`` is the only action
that bypasses the gate. Whatever happens inside a Turn, its audio is flushed
and the processing flag is cleared when it finishes. Audio that arrives during
any other gated action is flushed with it unless a quiz question is left
waiting for an answer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Hashable, List, Mapping

from .errors import InvalidInput, TutorError
from .languages import is_supported
from .protocol import AudioChunk, EndOfUtterance, ErrorMessage, InboundMessage, QuizAction, StartConversation
from .quiz import QuizEngine
from .services import TutorServices
from .sessions import MODES, Channel, ScheduledTask, Session, SessionRegistry
from .turns import TurnRunner


logger = logging.getLogger(__name__)

DEFAULT_LEARNING_LANGUAGE = "es-ES"
DEFAULT_NATIVE_LANGUAGE = "en-US"
DEFAULT_MODE = "echo"

Action = Callable[[], Awaitable[None]]


class ModeController:
	def __init__(self, services: TutorServices, registry: SessionRegistry) -> None:
		self.services = services
		self.settings = services.settings
		self.registry = registry
		self.quiz = QuizEngine(services)
		self.turns = TurnRunner(services, self.quiz)

	# ------------------------------------------------------------- lifecycle

	async def open(self, handle: Hashable, channel: Channel, params: Mapping[str, str]) -> Session:
		"""Create the session for a new connection from its query parameters.

		Missing values fall back to defaults. Invalid ones are reported to the
		client but never refuse the connection.
		"""
		learning = params.get("learningLanguage") or DEFAULT_LEARNING_LANGUAGE
		native = params.get("nativeLanguage") or DEFAULT_NATIVE_LANGUAGE
		mode = params.get("mode") or DEFAULT_MODE
		problems: List[str] = []
		if mode not in MODES:
			problems.append(f"Invalid mode: {mode}. Falling back to {DEFAULT_MODE}")
			mode = DEFAULT_MODE
		for code in dict.fromkeys((learning, native)):
			if not is_supported(code):
				problems.append(f"Unsupported language: {code}")

		session = Session(
			channel,
			learning,
			native,
			mode,
			scenario_id=params.get("scenarioId") or None,
			history_limit=self.settings.history_limit,
		)
		self.registry.create(handle, session)
		logger.info("Client connected: %s -> %s, mode=%s", learning, native, mode)
		try:
			for problem in problems:
				logger.warning(problem)
				await session.send(ErrorMessage(error=problem))
		except Exception:
			self.registry.remove(handle)
			raise

		if mode == "quiz":
			self.quiz.initialize(session, params.get("questions"), params.get("topic"))
			session.pending = ScheduledTask(
				self.settings.quiz_first_question_delay_seconds,
				lambda: self._first_question(session),
				name="quiz-first-question",
			)
		return session

	async def _first_question(self, session: Session) -> None:
		session.pending = None
		self.spawn(session, lambda: self.quiz.generate_and_send_question(session), "quiz question")

	def close(self, handle: Hashable) -> None:
		self.registry.remove(handle)
		logger.info("Client disconnected")

	# -------------------------------------------------------------- dispatch

	async def handle(self, session: Session, message: InboundMessage) -> None:
		if isinstance(message, AudioChunk):
			try:
				session.audio.append(message.data)
			except InvalidInput as exc:
				await session.send(ErrorMessage(error=str(exc)))
		elif isinstance(message, StartConversation):
			if session.mode != "dialogue":
				logger.info("start_conversation outside dialogue mode, ignoring")
				return
			self.spawn(session, lambda: self.turns.send_opening_line(session, message.scenario), "opening line")
		elif isinstance(message, EndOfUtterance):
			self._end_of_utterance(session)
		elif isinstance(message, QuizAction):
			if session.mode != "quiz":
				logger.info("Quiz action %r outside quiz mode, ignoring", message.action)
				return
			gated = message.action != "end_quiz"
			self.spawn(session, lambda: self.quiz.handle_action(session, message.action), message.action, gated=gated)

	def _end_of_utterance(self, session: Session) -> None:
		if session.is_processing:
			logger.info("Turn already in progress, ignoring end of utterance")
			return
		if session.mode == "quiz" and (session.quiz is None or not session.quiz.is_waiting_for_answer):
			logger.info("No quiz question is waiting for an answer, discarding %d audio chunks", len(session.audio))
			session.audio.flush()
			return
		logger.info("End of utterance: %d chunks, %d bytes", len(session.audio), session.audio.byte_count)
		self.spawn(session, lambda: self.turns.run(session), "turn", turn=True)

	# ----------------------------------------------------------------- tasks

	def spawn(self, session: Session, action: Action, label: str, *, gated: bool = True, turn: bool = False) -> bool:
		if session.closed:
			return False
		if gated:
			if session.is_processing:
				logger.info("Session busy, ignoring %s", label)
				return False
			session.is_processing = True
			session.task = asyncio.create_task(self._run(session, action, label, gated, turn), name=label)
		else:
			session.track(asyncio.create_task(self._run(session, action, label, gated, turn), name=label))
		return True

	async def _run(self, session: Session, action: Action, label: str, gated: bool, turn: bool) -> None:
		try:
			await action()
		except asyncio.CancelledError:
			raise
		except TutorError as exc:
			logger.warning("%s failed: %s", label, exc)
			await self._report(session, str(exc))
		except Exception as exc:
			logger.exception("%s failed", label)
			await self._report(session, f"Processing failed: {exc}")
		finally:
			if turn or (gated and not self._awaiting_answer(session)):
				session.audio.flush()
			if gated:
				session.is_processing = False
				if session.task is asyncio.current_task():
					session.task = None

	@staticmethod
	def _awaiting_answer(session: Session) -> bool:
		return session.quiz is not None and session.quiz.is_waiting_for_answer

	@staticmethod
	async def _report(session: Session, error: str) -> None:
		try:
			await session.send(ErrorMessage(error=error))
		except Exception as exc:
			logger.warning("Could not deliver error to client: %s", exc)
