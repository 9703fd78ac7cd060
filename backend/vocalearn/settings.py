from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Speech recognition (Deepgram live streaming)
	deepgram_api_key: str | None = Field(default=None, validation_alias="DEEPGRAM_API_KEY")
	deepgram_model: str = Field(default="nova-2", validation_alias="DEEPGRAM_MODEL")
	deepgram_url: str = Field(default="wss://api.deepgram.com/v1/listen", validation_alias="DEEPGRAM_URL")

	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="meta-llama/llama-3.1-8b-instruct", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="VocaLearn Tutor", validation_alias="OPENROUTER_TITLE")

	# Text-to-speech (Murf)
	murf_api_key: str | None = Field(default=None, validation_alias="MURF_API_KEY")
	murf_url: str = Field(default="https://api.murf.ai/v1/speech/generate", validation_alias="MURF_URL")

	# Connection and turn timing
	idle_timeout_seconds: float = Field(default=60.0, validation_alias="IDLE_TIMEOUT_SECONDS")
	transcription_timeout_seconds: float = Field(default=35.0, validation_alias="TRANSCRIPTION_TIMEOUT_SECONDS")
	transcription_finish_seconds: float = Field(default=30.0, validation_alias="TRANSCRIPTION_FINISH_SECONDS")
	transcription_settle_seconds: float = Field(default=2.5, validation_alias="TRANSCRIPTION_SETTLE_SECONDS")
	transcription_max_retries: int = Field(default=2, validation_alias="TRANSCRIPTION_MAX_RETRIES")
	transcription_retry_backoff_seconds: float = Field(default=1.0, validation_alias="TRANSCRIPTION_RETRY_BACKOFF_SECONDS")

	# Language-model quota (shared by every session in the process)
	llm_min_interval_seconds: float = Field(default=1.0, validation_alias="LLM_MIN_INTERVAL_SECONDS")
	llm_reservoir: int = Field(default=30, validation_alias="LLM_RESERVOIR")
	llm_reservoir_refresh_seconds: float = Field(default=60.0, validation_alias="LLM_RESERVOIR_REFRESH_SECONDS")

	# Quiz
	quiz_max_questions: int = Field(default=20, validation_alias="QUIZ_MAX_QUESTIONS")
	quiz_default_questions: int = Field(default=5, validation_alias="QUIZ_DEFAULT_QUESTIONS")
	quiz_question_timeout_seconds: float = Field(default=60.0, validation_alias="QUIZ_QUESTION_TIMEOUT_SECONDS")
	quiz_first_question_delay_seconds: float = Field(default=1.0, validation_alias="QUIZ_FIRST_QUESTION_DELAY_SECONDS")

	# Dialogue history
	history_limit: int = Field(default=30, validation_alias="HISTORY_LIMIT")
	history_prompt_window: int = Field(default=8, validation_alias="HISTORY_PROMPT_WINDOW")

	cors_origins: List[str] = Field(default=["*"], validation_alias="CORS_ORIGINS")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
