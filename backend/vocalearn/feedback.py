"""
Feedback Generator
==================

Turns a learner's transcript into structured tutoring feedback using the
language model.

Every model call goes through the shared ``RateLimiter`` so that all sessions
queue behind the same per-minute quota instead of failing. Model output is
expected to be a JSON object with ``correction``/``explanation`` keys; malformed
output degrades to templated fallback text rather than an exception. Only
transport failures (and an empty reply) propagate to the caller.

Field conventions per mode:
- echo: correction = corrected sentence (learning language),
  explanation = rationale (native language)
- dialogue: correction = the in-character reply (learning language),
  explanation = only for serious grammar errors (native language)
- quiz: correction = feedback/correct answer (learning language),
  explanation = rationale (native language). When the prompt asks for a quiz
  question instead, the model's ``{question, correctAnswer}`` JSON is handed
  back verbatim inside ``correction`` for the quiz engine to unwrap.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel

from .errors import InvalidMode, TutorError, UpstreamFormatError, UpstreamTransportError
from .rate_limiter import RateLimiter
from .scenarios import get_scenario
from .sessions import MODES, ConversationEntry
from .settings import Settings, settings as default_settings


logger = logging.getLogger(__name__)

PARSE_FALLBACK_CORRECTION = "Response received but format was incorrect"
PARSE_FALLBACK_EXPLANATION = "The AI response was not in the expected format. Please try again."
QUIZ_QUESTION_MARKER = "Quiz question generated"
NO_EXPLANATION = "No explanation provided"


class LanguageModel(Protocol):
	async def generate(self, prompt: str) -> str: ...


class Feedback(BaseModel):
	correction: str
	explanation: str


class AccuracyReport(BaseModel):
	accuracy: float
	pronunciation_score: float
	grammar_score: float
	fluency_score: float
	feedback: str

	@classmethod
	def neutral(cls) -> "AccuracyReport":
		return cls(
			accuracy=50,
			pronunciation_score=50,
			grammar_score=50,
			fluency_score=50,
			feedback="Unable to calculate accuracy at this time",
		)


# ============================================================================
# PARSING HELPERS
# ============================================================================

def extract_json_block(text: str) -> Dict[str, Any]:
	"""Extract a JSON object from a language-model reply.

	Tries the whole text first, then a fenced ```json block, then the first
	``{...}`` span.

	Args:
		text: Raw model output that should contain a JSON object

	Returns:
		The parsed object

	Raises:
		UpstreamFormatError: If no JSON object can be recovered
	"""
	candidates = [text]
	fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
	if fenced:
		candidates.append(fenced.group(1))
	braces = re.search(r"\{[\s\S]*\}", text)
	if braces:
		candidates.append(braces.group(0))
	for candidate in candidates:
		try:
			data = json.loads(candidate)
		except (TypeError, ValueError):
			continue
		if isinstance(data, dict):
			return data
	raise UpstreamFormatError("Model response is not a JSON object")


def clamp_score(value: Any, low: float = 0, high: float = 100) -> float:
	try:
		number = float(value)
	except (TypeError, ValueError):
		return float(low)
	if number != number:  # NaN
		return float(low)
	return max(low, min(high, number))


def format_history(history: Sequence[ConversationEntry], window: int) -> str:
	if not history:
		return ""
	recent = list(history)[-window:] if window > 0 else []
	omitted = len(history) - len(recent)
	lines: List[str] = []
	if omitted > 0:
		lines.append(f"({omitted} earlier messages omitted)")
	for entry in recent:
		speaker = "User" if entry.role == "user" else "You"
		lines.append(f"{speaker}: {entry.content}")
	return "\n".join(lines)


# ============================================================================
# PROMPTS
# ============================================================================

def _scenario_context(scenario_id: Optional[str], mode: str) -> str:
	if mode != "dialogue":
		return ""
	scenario = get_scenario(scenario_id)
	if scenario is None:
		return ""
	return f"""
SCENARIO CONTEXT: {scenario.context}
You are playing the role described in this scenario. Stay in character and respond appropriately to the scenario context.
Scenario: {scenario.title} - {scenario.description}
"""


def build_feedback_prompt(
	text: str,
	learning: str,
	native: str,
	mode: str,
	scenario_context: str = "",
	history_text: str = "",
) -> str:
	conversation = f"\nCONVERSATION SO FAR:\n{history_text}\n" if history_text else ""
	role_play = (
		"SCENARIO MODE: You are role-playing in this scenario. Stay completely in character, keep the "
		"conversation immersive and flowing, and respond as the role described in the scenario context."
		if scenario_context
		else ""
	)
	return f"""
You are a language tutor for {learning}, and you explain things in {native}.

The user said: "{text}" (in {learning}).

- Mode: {mode}
{scenario_context}{conversation}
CRITICAL: You are in "{mode}" mode. Follow the specific instructions for this mode only.

IMPORTANT LANGUAGE RULES:
- Learning language is: {learning}
- Native language (for explanations) is: {native}
- Put feedback/corrections in the learning language ({learning})
- Put explanations in the native language ({native})

- For 'echo' mode: If the input is incorrect, provide ONLY the corrected version in {learning} in the "correction" field, with no additional text. If correct, leave the "correction" field empty or put the original text. Put explanations in the "explanation" field (in {native}).

- For 'dialogue' mode: Generate a natural conversational reply in {learning} that continues the dialogue.
    {role_play}
    - Do NOT correct punctuation or minor formatting; focus on having a natural conversation
    - Answer questions from your character's perspective and keep the conversation going with a follow-up question or comment
    - Store the conversational reply in the "correction" field (in {learning})
    - Only use the "explanation" field for serious grammar errors that affected meaning, written in {native}

- For 'quiz' mode: Evaluate the user's SPOKEN answer in {learning}.
    This is spoken language: do NOT penalize missing punctuation, written formatting or anything that cannot be heard.
    Judge only vocabulary, grammar, meaning and pronunciation intent (based on the transcription).
    - If correct: put a brief "Correct!" style praise in {learning} in "correction"
    - If partially correct or incorrect: put the correct answer in {learning} in "correction" and explain the mistake in {native} in "explanation"

REMEMBER: ALL explanations must be written in {native}, NOT in {learning}!

Always return a **valid JSON** response like this:
{{
  "correction": "...",
  "explanation": "..."
}}
""".strip()


def build_accuracy_prompt(transcript: str, expected: str, language: str) -> str:
	return f"""
You are an expert language teacher evaluating speech accuracy. Analyze the user's spoken input and provide accuracy scores.

Expected text: "{expected}"
User's transcription: "{transcript}"
Language for feedback: {language}

Score each aspect from 0 to 100:
1. PRONUNCIATION: phonetic accuracy (based on transcription quality), stress and clarity
2. GRAMMAR: sentence structure, verb conjugation, word order
3. FLUENCY: natural rhythm and pace, no excessive hesitation
4. OVERALL ACCURACY: combined score considering all factors

Write constructive feedback in {language} about areas for improvement.

Respond in JSON format:
{{
  "pronunciationScore": <0-100>,
  "grammarScore": <0-100>,
  "fluencyScore": <0-100>,
  "accuracy": <0-100>,
  "feedback": "<feedback about pronunciation, grammar, and fluency>"
}}
""".strip()


# ============================================================================
# GENERATOR
# ============================================================================

class FeedbackGenerator:
	def __init__(self, model: LanguageModel, limiter: RateLimiter, settings: Optional[Settings] = None) -> None:
		self.model = model
		self.limiter = limiter
		self.settings = settings or default_settings

	async def complete(self, prompt: str) -> str:
		text = await self.limiter.run(self.model.generate, prompt)
		if not text or not text.strip():
			raise UpstreamTransportError("Language model returned an empty response")
		return text

	async def generate(
		self,
		text: str,
		learning: str,
		native: str,
		mode: str,
		scenario_id: Optional[str] = None,
		history: Optional[Sequence[ConversationEntry]] = None,
	) -> Feedback:
		if mode not in MODES:
			raise InvalidMode(f"Invalid Mode : {mode}")
		history_text = format_history(history or [], self.settings.history_prompt_window) if mode == "dialogue" else ""
		prompt = build_feedback_prompt(
			text,
			learning,
			native,
			mode,
			scenario_context=_scenario_context(scenario_id, mode),
			history_text=history_text,
		)
		raw = await self.complete(prompt)
		# An echo reply with no correction means the sentence was already right
		return self.parse(
			raw,
			empty_correction=text if mode == "echo" else None,
			empty_explanation=NO_EXPLANATION if mode == "echo" else "",
		)

	@staticmethod
	def parse(raw: str, empty_correction: Optional[str] = None, empty_explanation: str = NO_EXPLANATION) -> Feedback:
		try:
			data = extract_json_block(raw)
		except UpstreamFormatError:
			logger.warning("LLM JSON parsing error, raw response: %s", raw[:500])
			correction = raw if "correction" in raw else PARSE_FALLBACK_CORRECTION
			return Feedback(correction=correction, explanation=PARSE_FALLBACK_EXPLANATION)

		if data.get("question") and data.get("correctAnswer"):
			return Feedback(correction=json.dumps(data, ensure_ascii=False), explanation=QUIZ_QUESTION_MARKER)

		correction = data.get("correction") or data.get("response") or data.get("feedback")
		explanation = data.get("explanation")
		return Feedback(
			correction=str(correction) if correction else (empty_correction or "No correction provided"),
			explanation=str(explanation) if explanation else empty_explanation,
		)

	async def score_accuracy(self, transcript: str, expected: str, native: str, mode: str = "echo") -> AccuracyReport:
		prompt = build_accuracy_prompt(transcript, expected, native)
		try:
			raw = await self.complete(prompt)
			data = extract_json_block(raw)
		except TutorError as exc:
			logger.warning("Accuracy scoring failed for %s turn: %s", mode, exc)
			return AccuracyReport.neutral()
		return AccuracyReport(
			accuracy=clamp_score(data.get("accuracy")),
			pronunciation_score=clamp_score(data.get("pronunciationScore")),
			grammar_score=clamp_score(data.get("grammarScore")),
			fluency_score=clamp_score(data.get("fluencyScore")),
			feedback=str(data.get("feedback") or "No feedback provided"),
		)
