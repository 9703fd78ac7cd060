"""Shared fixtures: in-memory fakes for the recognizer, the language model and Murf."""
import asyncio
import json
from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest

from vocalearn.feedback import FeedbackGenerator
from vocalearn.rate_limiter import RateLimiter
from vocalearn.services import TutorServices
from vocalearn.sessions import Session
from vocalearn.settings import Settings
from vocalearn.speech import SpeechSynthesizer
from vocalearn.transcription import Transcription


QUESTION_JSON = json.dumps({"question": "¿Cuál es tu comida favorita?", "correctAnswer": "Mi comida favorita es la paella."})
EVALUATION_JSON = json.dumps({"correction": "¡Correcto! Muy bien.", "explanation": "Great answer."})
SUMMARY_JSON = json.dumps(
    {
        "pronunciationScore": 80,
        "grammarScore": 75,
        "vocabularyScore": 70,
        "comprehensionScore": 90,
        "overallScore": 79,
        "feedback": "Solid work overall.",
        "strengths": ["Clear answers"],
        "weaknesses": ["Verb endings"],
        "recommendations": ["Review past tense"],
    }
)
ACCURACY_JSON = json.dumps(
    {"pronunciationScore": 85, "grammarScore": 70, "fluencyScore": 90, "accuracy": 80, "feedback": "Nice rhythm."}
)
FEEDBACK_JSON = json.dumps({"correction": "¿Cómo estás tú?", "explanation": "Add the accents and drop the comma."})


class FakeSocket:
    """Stands in for the client connection: records every text frame sent."""

    def __init__(self):
        self.sent: List[str] = []

    async def send_text(self, data: str) -> None:
        self.sent.append(data)

    @property
    def messages(self) -> List[dict]:
        return [json.loads(s) for s in self.sent]

    def of_type(self, kind: str) -> List[dict]:
        return [m for m in self.messages if m.get("type") == kind]

    @property
    def errors(self) -> List[str]:
        return [m["error"] for m in self.messages if "error" in m]


Reply = Union[str, Exception, Callable[[str], str]]


class FakeModel:
    """Language model whose reply is picked by the first marker found in the prompt."""

    def __init__(self):
        self.routes: Dict[str, Reply] = {
            "Generate a unique quiz question": QUESTION_JSON,
            "evaluating a SPOKEN answer": EVALUATION_JSON,
            "reviewing a learner's spoken quiz": SUMMARY_JSON,
            "evaluating speech accuracy": ACCURACY_JSON,
        }
        self.default: Reply = FEEDBACK_JSON
        self.prompts: List[str] = []
        self.configured = True
        self.closed = False

    def route(self, marker: str, reply: Reply) -> None:
        others = {k: v for k, v in self.routes.items() if k != marker}
        self.routes = {marker: reply, **others}

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.default
        for marker, candidate in self.routes.items():
            if marker in prompt:
                reply = candidate
                break
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply

    def prompts_with(self, marker: str) -> List[str]:
        return [p for p in self.prompts if marker in p]

    async def aclose(self):
        self.closed = True


class FakeTranscriber:
    """Returns queued results in order; an Exception in the queue is raised."""

    def __init__(self):
        self.queue: List[Union[Transcription, Exception]] = []
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None
        self.configured = True

    def push(self, text: str, language: str = "es-ES", attempts: int = 1) -> None:
        self.queue.append(Transcription(text=text, language=language, attempts=attempts))

    async def transcribe(self, chunks, language):
        self.calls.append((list(chunks), language))
        if self.gate is not None:
            await self.gate.wait()
        item = self.queue.pop(0) if self.queue else Transcription(text="hola", language=language)
        if isinstance(item, Exception):
            raise item
        return item


class MurfStub:
    """httpx handler imitating Murf: numbered audio URLs, or failures on demand."""

    def __init__(self):
        self.requests: List[dict] = []
        self.fail_with: Optional[int] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append({"headers": dict(request.headers), "json": payload})
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"message": "boom"})
        return httpx.Response(200, json={"audioFile": f"https://audio.test/{len(self.requests)}.wav"})

    @property
    def texts(self) -> List[str]:
        return [r["json"]["text"] for r in self.requests]


def make_settings(**overrides) -> Settings:
    values = {
        "DEEPGRAM_API_KEY": "dg-test",
        "GEMINI_API_KEY": "gm-test",
        "MURF_API_KEY": "murf-test",
        "OPENROUTER_API_KEY": None,
        "LLM_MIN_INTERVAL_SECONDS": 0,
        "LLM_RESERVOIR": 1000,
        "QUIZ_FIRST_QUESTION_DELAY_SECONDS": 0,
        "TRANSCRIPTION_RETRY_BACKOFF_SECONDS": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def murf():
    return MurfStub()


@pytest.fixture
def services(settings, model, transcriber, murf):
    limiter = RateLimiter(min_interval=0, reservoir=1000, refresh_interval=60)
    speech = SpeechSynthesizer(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(murf)))
    return TutorServices(
        settings=settings,
        transcriber=transcriber,
        feedback=FeedbackGenerator(model, limiter, settings),
        speech=speech,
        model=model,
    )


@pytest.fixture
def socket():
    return FakeSocket()


def make_session(socket, mode="echo", learning="es-ES", native="en-US", **kwargs) -> Session:
    return Session(socket, learning, native, mode, **kwargs)


async def settle(session: Session, rounds: int = 20) -> None:
    """Wait until the session has no gated, background or pending work left."""
    for _ in range(rounds):
        await asyncio.sleep(0)
        tasks = [t for t in [session.task, *session.background] if t is not None]
        pending = session.pending is not None and session.pending.pending
        if not tasks and not pending:
            return
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        else:
            await asyncio.sleep(0.01)
