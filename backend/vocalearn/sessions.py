"""
Session Store
=============

In-memory state for live tutoring connections. One ``Session`` per connection,
held by a ``SessionRegistry`` that the WebSocket server owns and hands to its
handlers. Nothing here survives a restart: a reconnect is a brand-new session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Protocol, Set

from pydantic import BaseModel, Field

from .errors import FatalSessionError, InvalidInput
from .protocol import OutboundMessage, QuizQuestionRecord, encode_outbound


logger = logging.getLogger(__name__)

MODES = ("echo", "dialogue", "quiz")


class Channel(Protocol):
	async def send_text(self, data: str) -> None: ...


# ============================================================================
# SCHEDULED TASKS
# ============================================================================

class ScheduledTask:
	"""Cancellable delayed callback owned by the record whose state it guards.

	Cancelling from inside the callback itself is a no-op, so a timer that
	fires and then triggers code which cancels "the" timer does not abort
	its own work.
	"""

	def __init__(self, delay: float, callback: Callable[[], Awaitable[None]], *, name: Optional[str] = None) -> None:
		self.delay = delay
		self._task: asyncio.Task = asyncio.create_task(self._run(callback), name=name)
		self._task.add_done_callback(self._report_failure)

	async def _run(self, callback: Callable[[], Awaitable[None]]) -> None:
		await asyncio.sleep(self.delay)
		await callback()

	@staticmethod
	def _report_failure(task: asyncio.Task) -> None:
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			logger.error("Scheduled task %s failed", task.get_name(), exc_info=exc)

	@property
	def pending(self) -> bool:
		return not self._task.done()

	def cancel(self) -> None:
		if self._task is asyncio.current_task():
			return
		self._task.cancel()


# ============================================================================
# AUDIO ACCUMULATOR
# ============================================================================

class AudioBuffer:
	"""Ordered, append-only list of PCM chunks, cleared once per Turn."""

	def __init__(self) -> None:
		self._chunks: List[bytes] = []

	def append(self, chunk: bytes) -> None:
		if not chunk:
			raise InvalidInput("Empty audio data")
		self._chunks.append(chunk)

	def snapshot(self) -> List[bytes]:
		return list(self._chunks)

	def flush(self) -> None:
		self._chunks = []

	@property
	def byte_count(self) -> int:
		return sum(len(c) for c in self._chunks)

	def __len__(self) -> int:
		return len(self._chunks)


# ============================================================================
# SESSION RECORDS
# ============================================================================

class ConversationEntry(BaseModel):
	role: str  # "user" | "assistant"
	content: str
	timestamp: float = Field(default_factory=time.time)


class QuizSession:
	"""
	Question/answer/scoring state for one quiz.

	Attributes:
		current_question: Index of the question being asked (0-based)
		total_questions: Number of questions in this quiz, already capped
		score: Number of answers classified as correct
		topic: Free-text topic requested by the client
		questions: One record per question sent so far
		is_waiting_for_answer: True between "question sent" and
			"answer, skip or timeout received"
		question_history: Texts of every question asked, for non-repetition
		summary_generated: Guards against sending the summary twice
		timeout: Per-question auto-skip timer, if armed
	"""

	def __init__(self, total_questions: int, topic: str) -> None:
		self.current_question: int = 0
		self.total_questions: int = total_questions
		self.score: int = 0
		self.topic: str = topic
		self.questions: List[QuizQuestionRecord] = []
		self.is_waiting_for_answer: bool = False
		self.question_history: List[str] = []
		self.summary_generated: bool = False
		self.timeout: Optional[ScheduledTask] = None

	@property
	def finished(self) -> bool:
		return self.current_question >= self.total_questions

	def current_record(self) -> Optional[QuizQuestionRecord]:
		if 0 <= self.current_question < len(self.questions):
			return self.questions[self.current_question]
		return None

	def answered(self) -> List[QuizQuestionRecord]:
		return self.questions[: self.current_question]

	def arm_timeout(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
		self.cancel_timeout()
		self.timeout = ScheduledTask(delay, callback, name=f"quiz-timeout-{self.current_question}")

	def cancel_timeout(self) -> None:
		if self.timeout is not None:
			self.timeout.cancel()
			self.timeout = None


class Session:
	"""
	Server-side state for one live connection.

	Attributes:
		channel: The connection used to push events back to the client
		learning_language: Language being practised (e.g. "es-ES")
		native_language: Language used for explanations (e.g. "en-US")
		mode: "echo", "dialogue" or "quiz"
		scenario_id: Optional dialogue role-play scenario
		audio: Audio accumulated for the current Turn
		history: Dialogue history, time-ordered, capped at ``history_limit``
		quiz: Quiz sub-record while a quiz is running
		is_processing: True while a Turn (or other long action) is in flight
		task: The in-flight asyncio task, if any
		background: Ungated tasks (early quiz termination) still running
		pending: Delayed start-up action (first quiz question)
		conversation_started: Dialogue opening line already delivered
		last_transcription / last_transcription_time: Duplicate-answer diagnostics
		retry_count: Recognizer retries used by the most recent transcription
	"""

	def __init__(
		self,
		channel: Channel,
		learning_language: str,
		native_language: str,
		mode: str,
		*,
		scenario_id: Optional[str] = None,
		history_limit: int = 30,
	) -> None:
		self.channel = channel
		self.learning_language = learning_language
		self.native_language = native_language
		self.mode = mode
		self.scenario_id = scenario_id
		self.audio = AudioBuffer()
		self.history: List[ConversationEntry] = []
		self.history_limit = history_limit
		self.quiz: Optional[QuizSession] = None
		self.is_processing: bool = False
		self.task: Optional[asyncio.Task] = None
		self.background: Set[asyncio.Task] = set()
		self.pending: Optional[ScheduledTask] = None
		self.conversation_started: bool = False
		self.last_transcription: Optional[str] = None
		self.last_transcription_time: Optional[float] = None
		self.retry_count: int = 0
		self.closed: bool = False

	async def send(self, message: OutboundMessage) -> None:
		if self.closed:
			logger.debug("Dropping %s for closed session", type(message).__name__)
			return
		await self.channel.send_text(encode_outbound(message))

	def add_history(self, role: str, content: str) -> None:
		now = time.time()
		if self.history and now < self.history[-1].timestamp:
			now = self.history[-1].timestamp
		self.history.append(ConversationEntry(role=role, content=content, timestamp=now))
		if len(self.history) > self.history_limit:
			del self.history[: len(self.history) - self.history_limit]

	def track(self, task: asyncio.Task) -> None:
		self.background.add(task)
		task.add_done_callback(self.background.discard)

	def close(self) -> None:
		self.closed = True
		if self.pending is not None:
			self.pending.cancel()
			self.pending = None
		if self.quiz is not None:
			self.quiz.cancel_timeout()
		if self.task is not None and not self.task.done() and self.task is not asyncio.current_task():
			self.task.cancel()
		for task in list(self.background):
			if task is not asyncio.current_task():
				task.cancel()


class SessionRegistry:
	"""Sessions keyed by an opaque connection handle."""

	def __init__(self) -> None:
		self._sessions: Dict[Hashable, Session] = {}

	def create(self, handle: Hashable, session: Session) -> Session:
		self._sessions[handle] = session
		return session

	def get(self, handle: Hashable) -> Optional[Session]:
		return self._sessions.get(handle)

	def require(self, handle: Hashable) -> Session:
		session = self._sessions.get(handle)
		if session is None:
			raise FatalSessionError("Session not found")
		return session

	def remove(self, handle: Hashable) -> None:
		session = self._sessions.pop(handle, None)
		if session is not None:
			session.close()

	def __len__(self) -> int:
		return len(self._sessions)

	def __contains__(self, handle: Any) -> bool:
		return handle in self._sessions
