"""
Connection Protocol
===================

Wire vocabulary for the tutoring WebSocket.

Inbound frames are decoded once, here, into a closed set of message models:

- binary frame                         -> AudioChunk
- {"type": "start_conversation", ...}  -> StartConversation
- {"end": true}                        -> EndOfUtterance
- {"action": "<quiz action>"}          -> QuizAction

Anything else raises ProtocolError, which the connection handler logs and
drops. Outbound events are pydantic models serialised with camelCase keys and
``None`` fields omitted. Synthesised audio only ever travels as a URL inside an
``AudioMessage``.
"""

from __future__ import annotations

import json
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ProtocolError


class WireModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	def to_wire(self) -> str:
		return self.model_dump_json(by_alias=True, exclude_none=True)


# ============================================================================
# INBOUND
# ============================================================================

class AudioChunk(WireModel):
	data: bytes


class StartConversation(WireModel):
	type: Literal["start_conversation"]
	scenario: Optional[str] = None


class EndOfUtterance(WireModel):
	end: Literal[True]


class QuizAction(WireModel):
	action: Literal["skip_question", "next_question", "end_quiz", "final_audio_completed", "skip_final_audio"]


InboundMessage = Union[AudioChunk, StartConversation, EndOfUtterance, QuizAction]


def decode_inbound(frame: Union[bytes, str]) -> InboundMessage:
	"""Classify one WebSocket frame.

	Args:
		frame: Raw ``bytes`` (audio) or ``str`` (JSON control message)

	Returns:
		The decoded inbound message

	Raises:
		ProtocolError: If a text frame is not JSON or matches no known shape
	"""
	if isinstance(frame, (bytes, bytearray)):
		return AudioChunk(data=bytes(frame))
	try:
		payload = json.loads(frame)
	except (TypeError, ValueError) as exc:
		raise ProtocolError(f"Malformed control message: {exc}") from exc
	if not isinstance(payload, dict):
		raise ProtocolError("Control message must be a JSON object")
	try:
		if payload.get("type") == "start_conversation":
			return StartConversation.model_validate(payload)
		if "action" in payload:
			return QuizAction.model_validate(payload)
		if payload.get("end") is True:
			return EndOfUtterance(end=True)
	except PydanticValidationError as exc:
		raise ProtocolError(f"Unrecognized control message: {payload}") from exc
	raise ProtocolError(f"Unrecognized control message: {payload}")


# ============================================================================
# OUTBOUND
# ============================================================================

class TranscriptionMessage(WireModel):
	transcription: str
	language: str
	accuracy: float
	pronunciation_score: float
	grammar_score: float
	fluency_score: float
	accuracy_feedback: str


class FeedbackMessage(WireModel):
	correction: str
	explanation: str
	correction_language: str
	explanation_language: str


class AudioMessage(WireModel):
	type: Literal["audio"] = "audio"
	audio_url: str
	label: str
	is_final: bool = True


class DoneMessage(WireModel):
	type: Literal["done"] = "done"
	done: bool = True
	audio_correction_url: str = ""
	audio_explanation_url: str = ""


class QuizQuestionRecord(WireModel):
	question: str
	correct_answer: str
	user_answer: Optional[str] = None
	is_correct: Optional[bool] = None


class DetailedFeedback(WireModel):
	pronunciation_score: int
	grammar_score: int
	vocabulary_score: int
	comprehension_score: int
	overall_score: int
	feedback: str
	strengths: List[str] = Field(default_factory=list)
	weaknesses: List[str] = Field(default_factory=list)
	recommendations: List[str] = Field(default_factory=list)


class QuizQuestionMessage(WireModel):
	type: Literal["quiz_question"] = "quiz_question"
	question: str
	question_number: int
	total_questions: int
	question_audio_url: str


class QuizFeedbackMessage(WireModel):
	type: Literal["quiz_feedback"] = "quiz_feedback"
	is_correct: bool
	feedback: str
	explanation: str
	feedback_audio_url: str
	explanation_audio_url: str
	score: int
	current_question: int
	total_questions: int
	has_more_questions: bool


class QuizSummaryMessage(WireModel):
	type: Literal["quiz_summary"] = "quiz_summary"
	score: int
	total_questions: int
	percentage: int
	summary: str
	summary_audio_url: str
	questions: List[QuizQuestionRecord]
	detailed_feedback: DetailedFeedback


class QuizEndedEarlyMessage(WireModel):
	type: Literal["quiz_ended_early"] = "quiz_ended_early"
	reason: str
	score: int
	questions_answered: int
	total_questions: int
	percentage: int
	summary: str
	summary_audio_url: str
	questions: List[QuizQuestionRecord]
	detailed_feedback: DetailedFeedback


class ErrorMessage(WireModel):
	error: str


OutboundMessage = Union[
	TranscriptionMessage,
	FeedbackMessage,
	AudioMessage,
	DoneMessage,
	QuizQuestionMessage,
	QuizFeedbackMessage,
	QuizSummaryMessage,
	QuizEndedEarlyMessage,
	ErrorMessage,
]


def encode_outbound(message: OutboundMessage) -> str:
	return message.to_wire()

