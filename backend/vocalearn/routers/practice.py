"""
Practice Router

HTTP helpers for the tutoring client:
- the supported language table (with the TTS voice per language)
- the dialogue scenario catalogue
- practice session bootstrap, which validates the mode/language choice before
  the client opens the WebSocket
"""

from __future__ import annotations
import time
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..languages import SUPPORTED_LANGUAGES
from ..scenarios import SCENARIOS
from ..sessions import MODES

router = APIRouter(tags=["practice"])


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class StartPracticeRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	mode: Optional[str] = None
	learning_language: Optional[str] = Field(default=None, alias="learningLanguage")
	native_language: Optional[str] = Field(default=None, alias="nativeLanguage")


class StartPracticeResponse(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	session_id: str = Field(alias="sessionId")
	mode: str
	learning_language: str = Field(alias="learningLanguage")
	native_language: str = Field(alias="nativeLanguage")


class ScenarioSummary(BaseModel):
	id: str
	title: str
	description: str
	difficulty: str


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("/languages")
def list_languages() -> Dict[str, List[Dict[str, str]]]:
	"""Return every supported language with its display name and voice."""
	return {"languages": SUPPORTED_LANGUAGES}


@router.get("/scenarios", response_model=List[ScenarioSummary])
def list_scenarios() -> List[ScenarioSummary]:
	"""Return the dialogue scenario catalogue, without prompts."""
	return [
		ScenarioSummary(id=s.id, title=s.title, description=s.description, difficulty=s.difficulty)
		for s in SCENARIOS
	]


@router.post("/api/practice/start", response_model=StartPracticeResponse, response_model_by_alias=True)
def start_practice(req: StartPracticeRequest) -> StartPracticeResponse:
	"""Validate a practice choice and hand back a session id.

	Args:
		req: Mode plus learning and native language codes

	Returns:
		The accepted choice with a time-based session id

	Raises:
		HTTPException: 400 if the mode is unknown or a language is missing
	"""
	if req.mode not in MODES:
		raise HTTPException(status_code=400, detail="Invalid mode")
	if not req.learning_language or not req.native_language:
		raise HTTPException(status_code=400, detail="Missing languages")
	return StartPracticeResponse(
		session_id=str(int(time.time() * 1000)),
		mode=req.mode,
		learning_language=req.learning_language,
		native_language=req.native_language,
	)
