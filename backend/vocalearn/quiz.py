"""
Quiz Engine
===========

Question/answer/scoring state machine for quiz mode.

    idle -> question_sent (waiting) -> evaluating -> question_sent | summary

Pacing is client-driven: after each ``quiz_feedback`` the client sends
``next_question`` once the feedback audio has played, and after the last
question it sends ``final_audio_completed`` (or ``skip_final_audio``) before the
summary is produced. ``end_quiz`` ends the quiz at any point with a summary of
the answered questions only.

Every await point re-checks ``session.quiz is quiz``: ``end_quiz`` runs
alongside an in-flight Turn and may have discarded the quiz in the meantime.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import TutorError
from .feedback import QUIZ_QUESTION_MARKER, Feedback, clamp_score, extract_json_block
from .languages import FALLBACK_LANGUAGE, language_name
from .protocol import (
	DetailedFeedback,
	ErrorMessage,
	QuizEndedEarlyMessage,
	QuizFeedbackMessage,
	QuizQuestionMessage,
	QuizQuestionRecord,
	QuizSummaryMessage,
)
from .services import TutorServices
from .sessions import QuizSession, Session


logger = logging.getLogger(__name__)

QUESTION_TYPES = [
	"personal introduction questions",
	"daily routine questions",
	"describing objects or places",
	"expressing opinions or preferences",
	"talking about past experiences",
	"future plans or goals",
	"hypothetical scenarios",
	"comparing things",
	"giving directions or instructions",
	"cultural or traditional topics",
]

DUPLICATE_WINDOW_SECONDS = 3.0
EARLY_END_REASON = "Quiz ended by user request"

# (question, expected answer) used when the model gives us nothing usable
FALLBACK_QUESTIONS: Dict[str, Tuple[str, str]] = {
	"en-US": ("How are you today?", "I am fine, thank you."),
	"es-ES": ("¿Cómo estás hoy?", "Estoy bien, gracias."),
	"fr-FR": ("Comment allez-vous aujourd'hui ?", "Je vais bien, merci."),
	"hi-IN": ("आज आप कैसे हैं?", "मैं ठीक हूँ, धन्यवाद।"),
	"ja-JP": ("今日はお元気ですか？", "はい、元気です。ありがとうございます。"),
	"it-IT": ("Come stai oggi?", "Sto bene, grazie."),
	"de-DE": ("Wie geht es dir heute?", "Mir geht es gut, danke."),
	"nl-NL": ("Hoe gaat het vandaag met je?", "Het gaat goed, dank je."),
	"pt-BR": ("Como você está hoje?", "Estou bem, obrigado."),
}


# ============================================================================
# LOCALIZED TEXT
# ============================================================================

# (score, total, percentage, learning language name) -> sentence
SUMMARY_TEMPLATES: Dict[str, Callable[[int, int, int, str], str]] = {
	"en-US": lambda s, t, p, lang: f"Quiz completed! ... You scored {s} out of {t} ... That's {p} percent! ... Great job practicing your {lang}!",
	"es-ES": lambda s, t, p, lang: f"¡Cuestionario completado! ... Obtuviste {s} de {t} ... ¡Eso es {p} por ciento! ... ¡Excelente trabajo practicando tu {lang}!",
	"fr-FR": lambda s, t, p, lang: f"Quiz terminé! ... Vous avez obtenu {s} sur {t} ... C'est {p} pour cent! ... Excellent travail en pratiquant votre {lang}!",
	"hi-IN": lambda s, t, p, lang: f"प्रश्नोत्तरी पूर्ण! ... आपने {t} में से {s} अंक प्राप्त किए ... यह {p} प्रतिशत है! ... {lang} का अभ्यास करने के लिए बहुत बढ़िया काम!",
	"de-DE": lambda s, t, p, lang: f"Quiz abgeschlossen! ... Sie haben {s} von {t} erreicht ... Das sind {p} Prozent! ... Großartige Arbeit beim Üben Ihres {lang}!",
	"it-IT": lambda s, t, p, lang: f"Quiz completato! ... Hai ottenuto {s} su {t} ... È il {p} percento! ... Ottimo lavoro nel praticare il tuo {lang}!",
	"ja-JP": lambda s, t, p, lang: f"クイズ完了！ ... {t}問中{s}問正解 ... {p}パーセントです！ ... {lang}の練習、素晴らしいです！",
	"nl-NL": lambda s, t, p, lang: f"Quiz voltooid! ... Je scoorde {s} van de {t} ... Dat is {p} procent! ... Goed gedaan met het oefenen van je {lang}!",
	"pt-BR": lambda s, t, p, lang: f"Quiz concluído! ... Você acertou {s} de {t} ... Isso é {p} por cento! ... Ótimo trabalho praticando seu {lang}!",
}

# (score, answered, total, reason) -> sentence
EARLY_END_TEMPLATES: Dict[str, Callable[[int, int, int, str], str]] = {
	"en-US": lambda s, a, t, r: f"Quiz ended after {a} of {t} questions. ... You scored {s} out of {a}. ... {r}",
	"es-ES": lambda s, a, t, r: f"Cuestionario terminado después de {a} de {t} preguntas. ... Obtuviste {s} de {a}. ... {r}",
	"fr-FR": lambda s, a, t, r: f"Quiz terminé après {a} sur {t} questions. ... Vous avez obtenu {s} sur {a}. ... {r}",
	"hi-IN": lambda s, a, t, r: f"{t} में से {a} प्रश्नों के बाद प्रश्नोत्तरी समाप्त। ... आपने {a} में से {s} अंक प्राप्त किए। ... {r}",
	"de-DE": lambda s, a, t, r: f"Quiz nach {a} von {t} Fragen beendet. ... Sie haben {s} von {a} erreicht. ... {r}",
	"it-IT": lambda s, a, t, r: f"Quiz terminato dopo {a} di {t} domande. ... Hai ottenuto {s} su {a}. ... {r}",
	"ja-JP": lambda s, a, t, r: f"{t}問中{a}問でクイズ終了。 ... {a}問中{s}問正解。 ... {r}",
	"nl-NL": lambda s, a, t, r: f"Quiz beëindigd na {a} van de {t} vragen. ... Je scoorde {s} van de {a}. ... {r}",
	"pt-BR": lambda s, a, t, r: f"Quiz encerrado após {a} de {t} perguntas. ... Você acertou {s} de {a}. ... {r}",
}

# feedback, strengths, weaknesses, recommendations
FALLBACK_FEEDBACK: Dict[str, Dict[str, Any]] = {
	"en-US": {
		"feedback": "Good effort on this quiz! Keep practicing regularly to build confidence.",
		"strengths": ["You completed the quiz", "You practiced speaking out loud"],
		"weaknesses": ["Some answers could be more complete"],
		"recommendations": ["Practice a few minutes every day", "Repeat answers aloud to improve fluency"],
	},
	"es-ES": {
		"feedback": "¡Buen esfuerzo en este cuestionario! Sigue practicando con regularidad para ganar confianza.",
		"strengths": ["Completaste el cuestionario", "Practicaste hablando en voz alta"],
		"weaknesses": ["Algunas respuestas podrían ser más completas"],
		"recommendations": ["Practica unos minutos cada día", "Repite las respuestas en voz alta para mejorar la fluidez"],
	},
	"fr-FR": {
		"feedback": "Bel effort pour ce quiz ! Continuez à pratiquer régulièrement pour gagner en confiance.",
		"strengths": ["Vous avez terminé le quiz", "Vous avez pratiqué l'oral"],
		"weaknesses": ["Certaines réponses pourraient être plus complètes"],
		"recommendations": ["Pratiquez quelques minutes chaque jour", "Répétez les réponses à voix haute pour gagner en fluidité"],
	},
	"hi-IN": {
		"feedback": "इस प्रश्नोत्तरी में अच्छा प्रयास! आत्मविश्वास बढ़ाने के लिए नियमित अभ्यास करते रहें।",
		"strengths": ["आपने प्रश्नोत्तरी पूरी की", "आपने बोलकर अभ्यास किया"],
		"weaknesses": ["कुछ उत्तर और पूर्ण हो सकते थे"],
		"recommendations": ["हर दिन कुछ मिनट अभ्यास करें", "प्रवाह सुधारने के लिए उत्तर ज़ोर से दोहराएँ"],
	},
	"ja-JP": {
		"feedback": "クイズお疲れさまでした！自信をつけるために定期的に練習を続けましょう。",
		"strengths": ["クイズを最後までやり遂げました", "声に出して練習しました"],
		"weaknesses": ["いくつかの回答はもっと詳しくできます"],
		"recommendations": ["毎日数分練習しましょう", "流暢さを高めるために回答を声に出して繰り返しましょう"],
	},
	"it-IT": {
		"feedback": "Buon impegno in questo quiz! Continua a esercitarti regolarmente per acquisire sicurezza.",
		"strengths": ["Hai completato il quiz", "Hai fatto pratica parlando ad alta voce"],
		"weaknesses": ["Alcune risposte potrebbero essere più complete"],
		"recommendations": ["Esercitati qualche minuto ogni giorno", "Ripeti le risposte ad alta voce per migliorare la fluidità"],
	},
	"de-DE": {
		"feedback": "Gute Leistung bei diesem Quiz! Üben Sie regelmäßig weiter, um sicherer zu werden.",
		"strengths": ["Sie haben das Quiz abgeschlossen", "Sie haben laut gesprochen und geübt"],
		"weaknesses": ["Einige Antworten könnten vollständiger sein"],
		"recommendations": ["Üben Sie jeden Tag ein paar Minuten", "Wiederholen Sie Antworten laut, um flüssiger zu werden"],
	},
	"nl-NL": {
		"feedback": "Goed geprobeerd bij deze quiz! Blijf regelmatig oefenen om zelfvertrouwen op te bouwen.",
		"strengths": ["Je hebt de quiz afgerond", "Je hebt hardop spreken geoefend"],
		"weaknesses": ["Sommige antwoorden kunnen vollediger"],
		"recommendations": ["Oefen elke dag een paar minuten", "Herhaal antwoorden hardop om vloeiender te worden"],
	},
	"pt-BR": {
		"feedback": "Bom esforço neste quiz! Continue praticando regularmente para ganhar confiança.",
		"strengths": ["Você concluiu o quiz", "Você praticou falando em voz alta"],
		"weaknesses": ["Algumas respostas poderiam ser mais completas"],
		"recommendations": ["Pratique alguns minutos todos os dias", "Repita as respostas em voz alta para melhorar a fluência"],
	},
}

SKIPPED_FEEDBACK = "Question skipped. The correct answer was: {answer}"
SKIPPED_EXPLANATION = "This question was skipped. Try to answer the next one!"


def summary_text(native: str, score: int, total: int, percentage: int, learning_name: str) -> str:
	template = SUMMARY_TEMPLATES.get(native) or SUMMARY_TEMPLATES[FALLBACK_LANGUAGE]
	return template(score, total, percentage, learning_name)


def early_end_text(native: str, score: int, answered: int, total: int, reason: str) -> str:
	template = EARLY_END_TEMPLATES.get(native) or EARLY_END_TEMPLATES[FALLBACK_LANGUAGE]
	return template(score, answered, total, reason)


def fallback_question(learning: str) -> Tuple[str, str]:
	return FALLBACK_QUESTIONS.get(learning) or FALLBACK_QUESTIONS[FALLBACK_LANGUAGE]


def fallback_feedback(native: str, percentage: int) -> DetailedFeedback:
	bundle = FALLBACK_FEEDBACK.get(native) or FALLBACK_FEEDBACK[FALLBACK_LANGUAGE]
	return DetailedFeedback(
		pronunciation_score=percentage,
		grammar_score=percentage,
		vocabulary_score=percentage,
		comprehension_score=percentage,
		overall_score=percentage,
		feedback=bundle["feedback"],
		strengths=list(bundle["strengths"]),
		weaknesses=list(bundle["weaknesses"]),
		recommendations=list(bundle["recommendations"]),
	)


# ============================================================================
# SCORING HELPERS
# ============================================================================

POSITIVE_MARKERS = ("correct", "correcto", "सही", "bien", "good", "excellent", "perfect", "right", "great")
NEGATIVE_MARKERS = ("incorrect", "wrong", "गलत")


def classify_correctness(feedback_text: str) -> bool:
	"""Guess whether the model judged an answer correct from its feedback text.

	True when any positive marker appears, otherwise True unless a negative
	marker appears (or both "no" and "not" do). Substring matching means
	"incorrect" also contains "correct" and is classified as correct. This is
	known behavior; replace the call site with an explicit model-provided
	boolean rather than patching the word lists.
	"""
	lowered = (feedback_text or "").lower()
	if any(marker in lowered for marker in POSITIVE_MARKERS):
		return True
	negative = any(marker in lowered for marker in NEGATIVE_MARKERS) or ("no" in lowered and "not" in lowered)
	return not negative


def percentage_of(score: int, count: int) -> int:
	if count <= 0:
		return 0
	# Half-up rounding, so 2/8 -> 25 and 1/8 -> 13
	return int(score * 100 / count + 0.5)


def parse_question_count(raw: Optional[str], default: int, cap: int) -> int:
	try:
		count = int(raw) if raw is not None else default
	except (TypeError, ValueError):
		count = default
	return max(1, min(count, cap))


def _string_list(value: Any) -> List[str]:
	if isinstance(value, list):
		return [str(v) for v in value if str(v).strip()]
	if isinstance(value, str) and value.strip():
		return [value.strip()]
	return []


def unwrap_question(reply: Feedback) -> Optional[Tuple[str, str]]:
	"""Pull ``(question, correctAnswer)`` out of a question-generation reply."""
	if reply.explanation != QUIZ_QUESTION_MARKER:
		return None
	try:
		data = json.loads(reply.correction)
	except ValueError:
		return None
	question = str(data.get("question") or "").strip()
	answer = str(data.get("correctAnswer") or "").strip()
	if not question:
		return None
	return question, answer


# ============================================================================
# PROMPTS
# ============================================================================

def build_question_prompt(learning: str, topic: str, focus: str, previous: List[str]) -> str:
	history = ""
	if previous:
		history = "\n\nPrevious questions asked (DO NOT repeat these):\n" + "\n".join(previous)
	return f"""
Generate a unique quiz question for language learners practicing SPOKEN {learning}.
Topic: {topic}
Question focus: {focus}

LANGUAGE REQUIREMENTS:
- The question MUST be written entirely in {learning}
- Do NOT use English or any other language
- Use natural, conversational {learning}

Requirements:
- Must be different from any previous questions
- Should test vocabulary, grammar, or comprehension through speech
- Focus on content that doesn't rely on written punctuation or formatting
- Create a question with a clear, unambiguous spoken answer
- Make it appropriate for intermediate language learners

IMPORTANT: Return your response as valid JSON in this exact format:
{{
  "question": "your unique question here in {learning}",
  "correctAnswer": "expected answer here in {learning}"
}}{history}
""".strip()


def build_evaluation_prompt(question: str, expected: str, answer: str, learning: str) -> str:
	return f"""
You are evaluating a SPOKEN answer to a language learning quiz question.
The user answered through speech, so focus ONLY on the spoken content, NOT on written punctuation or formatting.

Question: "{question}"
Expected Answer: "{expected}"
User's Spoken Answer: "{answer}"

If the user answered the specific question asked, mark it as correct even if the phrasing is different.
Evaluate vocabulary and word choice, grammar and sentence structure, and whether the meaning addresses the question.

Do NOT penalize for:
- Missing punctuation marks (these cannot be heard in speech)
- Alternative but correct ways of expressing the same idea
- Personal preferences when the question asks for personal information

Respond with encouraging feedback in {learning}. If the answer is correct, praise the user briefly. If incorrect, explain what was wrong and provide the correct answer.
""".strip()


def build_summary_prompt(records: List[QuizQuestionRecord], learning: str, native: str, percentage: int) -> str:
	lines = []
	for i, record in enumerate(records, start=1):
		verdict = "correct" if record.is_correct else "incorrect or skipped"
		lines.append(
			f"{i}. Question: {record.question}\n   Expected: {record.correct_answer}\n"
			f"   Learner said: {record.user_answer or '(no answer)'} ({verdict})"
		)
	answers = "\n".join(lines)
	return f"""
You are an experienced {learning} teacher reviewing a learner's spoken quiz. The quiz score was {percentage}%.

{answers}

Assess the learner holistically. Every text field MUST be written in {native}.

Return STRICT JSON only, following exactly this schema:
{{
  "pronunciationScore": <0-100>,
  "grammarScore": <0-100>,
  "vocabularyScore": <0-100>,
  "comprehensionScore": <0-100>,
  "overallScore": <0-100>,
  "feedback": "overall feedback in {native}",
  "strengths": ["..."],
  "weaknesses": ["..."],
  "recommendations": ["..."]
}}
""".strip()


# ============================================================================
# ENGINE
# ============================================================================

class QuizEngine:
	def __init__(self, services: TutorServices) -> None:
		self.services = services
		self.settings = services.settings

	def initialize(self, session: Session, questions: Optional[str] = None, topic: Optional[str] = None) -> QuizSession:
		total = parse_question_count(questions, self.settings.quiz_default_questions, self.settings.quiz_max_questions)
		session.quiz = QuizSession(total_questions=total, topic=(topic or "general").strip() or "general")
		logger.info("Starting quiz: %d questions on topic %r", total, session.quiz.topic)
		return session.quiz

	# --------------------------------------------------------------- questions

	async def generate_and_send_question(self, session: Session) -> None:
		quiz = session.quiz
		if quiz is None or quiz.is_waiting_for_answer or quiz.finished:
			return
		session.retry_count = 0
		logger.info("Generating quiz question %d/%d", quiz.current_question + 1, quiz.total_questions)

		prompt = build_question_prompt(
			session.learning_language,
			quiz.topic,
			random.choice(QUESTION_TYPES),
			quiz.question_history,
		)
		try:
			reply = await self.services.feedback.generate(
				prompt, session.learning_language, session.native_language, "quiz"
			)
		except TutorError as exc:
			logger.error("Error generating quiz question: %s", exc)
			await session.send(ErrorMessage(error="Failed to generate quiz question"))
			return
		if session.quiz is not quiz:
			return

		question, answer = self._choose_question(quiz, session.learning_language, unwrap_question(reply))
		if question not in quiz.question_history:
			quiz.question_history.append(question)
		# Drop a record left unanswered by an aborted evaluation
		del quiz.questions[quiz.current_question:]
		quiz.questions.append(QuizQuestionRecord(question=question, correct_answer=answer))

		audio_url = await self.services.speech.synthesize(session, question, session.learning_language, "correction")
		if session.quiz is not quiz:
			return

		quiz.is_waiting_for_answer = True
		session.retry_count = 0
		session.last_transcription = None
		session.last_transcription_time = None
		self.arm_timeout(session, quiz)
		await session.send(
			QuizQuestionMessage(
				question=question,
				question_number=quiz.current_question + 1,
				total_questions=quiz.total_questions,
				question_audio_url=audio_url,
			)
		)

	@staticmethod
	def _choose_question(quiz: QuizSession, learning: str, generated: Optional[Tuple[str, str]]) -> Tuple[str, str]:
		fallback = fallback_question(learning)
		if generated is None:
			logger.warning("Could not parse question JSON, using fallback question")
			return fallback
		if generated[0] in quiz.question_history:
			if fallback[0] not in quiz.question_history:
				logger.warning("Model repeated a previous question, using fallback question")
				return fallback
			logger.warning("Model repeated a previous question and fallback already used")
		return generated

	def arm_timeout(self, session: Session, quiz: QuizSession) -> None:
		index = quiz.current_question

		async def on_timeout() -> None:
			if session.quiz is not quiz or not quiz.is_waiting_for_answer or quiz.current_question != index:
				return
			if session.is_processing:
				logger.info("Question timeout while a turn is in flight, ignoring")
				return
			logger.info("Question timeout - auto-advancing")
			session.track(asyncio.current_task())
			session.is_processing = True
			try:
				await self.handle_answer(session, "")
			finally:
				session.is_processing = False

		quiz.arm_timeout(self.settings.quiz_question_timeout_seconds, on_timeout)

	# ----------------------------------------------------------------- answers

	def note_transcription(self, session: Session, text: str) -> bool:
		"""Log (only) an identical answer repeated within a few seconds."""
		now = time.monotonic()
		normalized = " ".join(text.lower().split())
		duplicate = (
			bool(normalized)
			and session.last_transcription == normalized
			and session.last_transcription_time is not None
			and now - session.last_transcription_time < DUPLICATE_WINDOW_SECONDS
		)
		if duplicate:
			logger.warning("Possible duplicate transcription within %.0fs: %r", DUPLICATE_WINDOW_SECONDS, text)
		session.last_transcription = normalized
		session.last_transcription_time = now
		return duplicate

	async def handle_answer(self, session: Session, answer: str) -> None:
		quiz = session.quiz
		if quiz is None or not quiz.is_waiting_for_answer:
			return
		record = quiz.current_record()
		if record is None:
			return
		quiz.cancel_timeout()
		quiz.is_waiting_for_answer = False
		record.user_answer = answer
		logger.info("Evaluating quiz answer: %r", answer)

		if not answer or not answer.strip():
			await self._send_skipped(session, quiz, record)
			return

		try:
			result = await self.services.feedback.generate(
				build_evaluation_prompt(record.question, record.correct_answer, answer, session.learning_language),
				session.learning_language,
				session.native_language,
				"quiz",
			)
		except TutorError as exc:
			logger.error("Error handling quiz answer: %s", exc)
			if session.quiz is quiz:
				record.user_answer = None
				quiz.is_waiting_for_answer = True
				self.arm_timeout(session, quiz)
			await session.send(ErrorMessage(error="Failed to evaluate quiz answer"))
			return
		if session.quiz is not quiz:
			return

		is_correct = classify_correctness(result.correction)
		feedback_url = await self.services.speech.synthesize(
			session, result.correction, session.learning_language, "correction"
		)
		explanation_url = ""
		if result.explanation.strip():
			explanation_url = await self.services.speech.synthesize(
				session, result.explanation, session.native_language, "explanation"
			)
		await self._complete_question(
			session, quiz, record, is_correct, result.correction, result.explanation, feedback_url, explanation_url
		)

	async def _send_skipped(self, session: Session, quiz: QuizSession, record: QuizQuestionRecord) -> None:
		logger.info("Question %d was skipped or unanswered", quiz.current_question + 1)
		feedback = SKIPPED_FEEDBACK.format(answer=record.correct_answer)
		feedback_url = await self.services.speech.synthesize(session, feedback, session.learning_language, "correction")
		explanation_url = await self.services.speech.synthesize(
			session, SKIPPED_EXPLANATION, session.native_language, "explanation"
		)
		await self._complete_question(
			session, quiz, record, False, feedback, SKIPPED_EXPLANATION, feedback_url, explanation_url
		)

	async def _complete_question(
		self,
		session: Session,
		quiz: QuizSession,
		record: QuizQuestionRecord,
		is_correct: bool,
		feedback: str,
		explanation: str,
		feedback_url: str,
		explanation_url: str,
	) -> None:
		if session.quiz is not quiz:
			return
		if is_correct:
			quiz.score += 1
		record.is_correct = is_correct
		quiz.current_question += 1
		await session.send(
			QuizFeedbackMessage(
				is_correct=is_correct,
				feedback=feedback,
				explanation=explanation,
				feedback_audio_url=feedback_url,
				explanation_audio_url=explanation_url,
				score=quiz.score,
				current_question=quiz.current_question,
				total_questions=quiz.total_questions,
				has_more_questions=not quiz.finished,
			)
		)
		if quiz.finished:
			logger.info("Last question completed - waiting for client to confirm audio completion")

	# ---------------------------------------------------------------- controls

	def accepts(self, session: Session, action: str) -> bool:
		"""Whether ``action`` is valid in the quiz's current state."""
		quiz = session.quiz
		if quiz is None:
			return False
		if action == "end_quiz":
			return not quiz.summary_generated
		if action == "skip_question":
			return quiz.is_waiting_for_answer
		if action == "next_question":
			return not quiz.is_waiting_for_answer
		if action in ("final_audio_completed", "skip_final_audio"):
			return quiz.finished and not quiz.summary_generated
		return False

	async def handle_action(self, session: Session, action: str) -> None:
		if not self.accepts(session, action):
			logger.info("Ignoring quiz action %r in current state", action)
			return
		quiz = session.quiz
		if action == "end_quiz":
			await self.end_early(session, EARLY_END_REASON)
		elif action == "skip_question":
			logger.info("Skipping current question")
			await self.handle_answer(session, "")
		elif action == "next_question":
			if quiz.finished:
				await self.send_summary(session)
			else:
				await self.generate_and_send_question(session)
		else:
			logger.info("Client released the final summary (%s)", action)
			await self.send_summary(session)

	# --------------------------------------------------------------- summaries

	async def detailed_feedback(
		self, session: Session, records: List[QuizQuestionRecord], percentage: int
	) -> DetailedFeedback:
		native = session.native_language
		if not records:
			return fallback_feedback(native, percentage)
		prompt = build_summary_prompt(records, session.learning_language, native, percentage)
		try:
			data = extract_json_block(await self.services.feedback.complete(prompt))
		except TutorError as exc:
			logger.warning("Detailed quiz feedback unavailable, using fallback: %s", exc)
			return fallback_feedback(native, percentage)
		text = str(data.get("feedback") or "").strip()
		if not text:
			logger.warning("Detailed quiz feedback missing text, using fallback")
			return fallback_feedback(native, percentage)

		def score(key: str) -> int:
			return int(round(clamp_score(data.get(key, percentage))))

		return DetailedFeedback(
			pronunciation_score=score("pronunciationScore"),
			grammar_score=score("grammarScore"),
			vocabulary_score=score("vocabularyScore"),
			comprehension_score=score("comprehensionScore"),
			overall_score=score("overallScore"),
			feedback=text,
			strengths=_string_list(data.get("strengths")),
			weaknesses=_string_list(data.get("weaknesses")),
			recommendations=_string_list(data.get("recommendations")),
		)

	async def send_summary(self, session: Session) -> None:
		quiz = session.quiz
		if quiz is None:
			return
		if quiz.summary_generated:
			logger.info("Quiz summary already generated, skipping duplicate")
			return
		quiz.summary_generated = True
		quiz.cancel_timeout()
		quiz.is_waiting_for_answer = False

		score, total = quiz.score, quiz.total_questions
		percentage = percentage_of(score, total)
		logger.info("Quiz completed - Score: %d/%d", score, total)
		detailed = await self.detailed_feedback(session, quiz.answered(), percentage)
		summary = summary_text(
			session.native_language, score, total, percentage, language_name(session.learning_language)
		)
		audio_url = await self.services.speech.synthesize(session, summary, session.native_language, "explanation")
		if session.quiz is quiz:
			session.quiz = None
		await session.send(
			QuizSummaryMessage(
				score=score,
				total_questions=total,
				percentage=percentage,
				summary=summary,
				summary_audio_url=audio_url,
				questions=list(quiz.questions),
				detailed_feedback=detailed,
			)
		)

	async def end_early(self, session: Session, reason: str = EARLY_END_REASON) -> None:
		quiz = session.quiz
		if quiz is None or quiz.summary_generated:
			return
		quiz.summary_generated = True
		quiz.cancel_timeout()
		quiz.is_waiting_for_answer = False
		logger.info("Quiz ended early: %s", reason)

		score, answered, total = quiz.score, quiz.current_question, quiz.total_questions
		percentage = percentage_of(score, answered)
		records = quiz.answered()
		detailed = await self.detailed_feedback(session, records, percentage)
		summary = early_end_text(session.native_language, score, answered, total, reason)
		audio_url = await self.services.speech.synthesize(session, summary, session.native_language, "explanation")
		if session.quiz is quiz:
			session.quiz = None
		await session.send(
			QuizEndedEarlyMessage(
				reason=reason,
				score=score,
				questions_answered=answered,
				total_questions=total,
				percentage=percentage,
				summary=summary,
				summary_audio_url=audio_url,
				questions=records,
				detailed_feedback=detailed,
			)
		)
