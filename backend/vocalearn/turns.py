from __future__ import annotations

import logging
from typing import Optional

from .errors import TutorError
from .languages import language_name
from .protocol import DoneMessage, ErrorMessage, FeedbackMessage, TranscriptionMessage
from .quiz import QuizEngine
from .scenarios import free_conversation_opener, get_scenario, starting_prompt
from .services import TutorServices
from .sessions import Session

logger = logging.getLogger(__name__)

NO_SPEECH = "No speech detected"


class TurnRunner:
	"""
	One Turn per call: Transcription -> Feedback -> Scoring -> Synthesis -> done.

	Each stage's output reaches the client as soon as it exists. Errors
	propagate to the caller, which reports them and resets the session.
	"""

	def __init__(self, services: TutorServices, quiz: QuizEngine) -> None:
		self.services = services
		self.quiz = quiz

	async def run(self, session: Session) -> None:
		if session.mode == "quiz":
			await self.run_quiz_answer(session)
		else:
			await self.run_conversation_turn(session)

	async def run_conversation_turn(self, session: Session) -> None:
		learning, native = session.learning_language, session.native_language
		result = await self.services.transcriber.transcribe(session.audio.snapshot(), learning)
		session.retry_count = result.attempts - 1
		text = result.text.strip()
		logger.info("Transcription: %r", text)
		if not text:
			await session.send(ErrorMessage(error=NO_SPEECH))
			return

		history = list(session.history) if session.mode == "dialogue" else None
		reply = await self.services.feedback.generate(
			text, learning, native, session.mode, session.scenario_id, history
		)
		if session.mode == "dialogue":
			session.add_history("user", text)
			session.add_history("assistant", reply.correction)

		# Dialogue replies are not corrections, so the learner is scored against their own speech
		expected = reply.correction if session.mode == "echo" else text
		accuracy = await self.services.feedback.score_accuracy(text, expected, native, session.mode)

		await session.send(
			TranscriptionMessage(
				transcription=text,
				language=learning,
				accuracy=accuracy.accuracy,
				pronunciation_score=accuracy.pronunciation_score,
				grammar_score=accuracy.grammar_score,
				fluency_score=accuracy.fluency_score,
				accuracy_feedback=accuracy.feedback,
			)
		)
		await session.send(
			FeedbackMessage(
				correction=reply.correction,
				explanation=reply.explanation,
				correction_language=learning,
				explanation_language=native,
			)
		)
		correction_url = await self.services.speech.synthesize(session, reply.correction, learning, "correction")
		explanation_url = ""
		if reply.explanation.strip():
			explanation_url = await self.services.speech.synthesize(session, reply.explanation, native, "explanation")
		await session.send(DoneMessage(audio_correction_url=correction_url, audio_explanation_url=explanation_url))

	async def run_quiz_answer(self, session: Session) -> None:
		quiz = session.quiz
		if quiz is None or not quiz.is_waiting_for_answer:
			logger.info("No quiz question is waiting for an answer, ignoring turn")
			return
		quiz.cancel_timeout()
		try:
			result = await self.services.transcriber.transcribe(session.audio.snapshot(), session.learning_language)
		except Exception as exc:
			if session.quiz is quiz and quiz.is_waiting_for_answer:
				self.quiz.arm_timeout(session, quiz)
			if not isinstance(exc, TutorError):
				raise
			logger.warning("Quiz answer transcription failed: %s", exc)
			await session.send(ErrorMessage(error=str(exc)))
			return
		session.retry_count = result.attempts - 1
		logger.info("Quiz answer transcription: %r", result.text)
		self.quiz.note_transcription(session, result.text)
		await self.quiz.handle_answer(session, result.text)

	async def send_opening_line(self, session: Session, scenario_id: Optional[str] = None) -> None:
		if session.conversation_started:
			logger.info("Conversation already started, ignoring start_conversation")
			return
		session.conversation_started = True
		learning, native = session.learning_language, session.native_language
		scenario = get_scenario(scenario_id or session.scenario_id)
		if scenario is not None:
			session.scenario_id = scenario.id
			line = starting_prompt(scenario.id, learning)
			explanation = f"Starting {scenario.title} scenario: {scenario.description}"
		else:
			line = free_conversation_opener(learning)
			explanation = f"Starting a friendly conversation to practice {language_name(learning)}"
		session.add_history("assistant", line)
		await session.send(
			FeedbackMessage(
				correction=line,
				explanation=explanation,
				correction_language=learning,
				explanation_language=native,
			)
		)
		audio_url = await self.services.speech.synthesize(session, line, learning, "correction")
		await session.send(DoneMessage(audio_correction_url=audio_url))
