"""Tests for session set-up, message routing and the one-action-at-a-time gate."""
import asyncio

import pytest

from conftest import FakeSocket, settle
from vocalearn.controller import ModeController
from vocalearn.errors import UpstreamTransportError
from vocalearn.protocol import AudioChunk, EndOfUtterance, QuizAction, StartConversation
from vocalearn.sessions import SessionRegistry


class ClosedSocket(FakeSocket):
    async def send_text(self, data: str) -> None:
        raise ConnectionError("client went away")


@pytest.fixture
async def controller(services):
    controller = ModeController(services, SessionRegistry())
    yield controller
    for handle in list(controller.registry._sessions):
        controller.close(handle)


async def speak(controller, session, *chunks):
    for chunk in chunks or (b"\x00\x01",):
        await controller.handle(session, AudioChunk(data=chunk))
    await controller.handle(session, EndOfUtterance(end=True))


class TestOpen:
    async def test_defaults(self, controller, socket):
        session = await controller.open("h", socket, {})

        assert (session.learning_language, session.native_language, session.mode) == ("es-ES", "en-US", "echo")
        assert controller.registry.get("h") is session
        assert socket.sent == []

    async def test_invalid_mode_falls_back_to_echo(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "karaoke"})

        assert session.mode == "echo"
        assert socket.errors == ["Invalid mode: karaoke. Falling back to echo"]

    async def test_unsupported_language_reported_but_connected(self, controller, socket):
        session = await controller.open("h", socket, {"learningLanguage": "xx-XX", "nativeLanguage": "en-US"})

        assert session.learning_language == "xx-XX"
        assert socket.errors == ["Unsupported language: xx-XX"]

    async def test_scenario_taken_from_query(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "dialogue", "scenarioId": "shopping"})

        assert session.scenario_id == "shopping"

    async def test_quiz_capped_and_first_question_sent(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "quiz", "questions": "50", "topic": "food"})

        assert session.quiz.total_questions == 20
        await settle(session)

        question = socket.of_type("quiz_question")[0]
        assert question["questionNumber"] == 1
        assert question["totalQuestions"] == 20

    async def test_failed_open_leaves_no_session(self, controller):
        with pytest.raises(ConnectionError):
            await controller.open("h", ClosedSocket(), {"mode": "bogus", "learningLanguage": "fr-FR"})

        assert "h" not in controller.registry
        assert len(controller.registry) == 0

    async def test_close_before_first_question(self, controller, socket):
        controller.settings.quiz_first_question_delay_seconds = 0.05
        session = await controller.open("h", socket, {"mode": "quiz"})

        controller.close("h")
        await asyncio.sleep(0.1)

        assert session.closed is True
        assert socket.of_type("quiz_question") == []
        assert "h" not in controller.registry


class TestAudio:
    async def test_chunks_accumulate(self, controller, socket):
        session = await controller.open("h", socket, {})

        await controller.handle(session, AudioChunk(data=b"ab"))
        await controller.handle(session, AudioChunk(data=b"c"))

        assert session.audio.snapshot() == [b"ab", b"c"]

    async def test_empty_chunk_reported(self, controller, socket):
        session = await controller.open("h", socket, {})

        await controller.handle(session, AudioChunk(data=b""))

        assert socket.errors == ["Empty audio data"]
        assert len(session.audio) == 0


class TestTurns:
    async def test_turn_runs_and_flushes(self, controller, socket, transcriber):
        session = await controller.open("h", socket, {})

        await speak(controller, session, b"a", b"b")
        await settle(session)

        assert transcriber.calls == [([b"a", b"b"], "es-ES")]
        assert socket.of_type("done")
        assert len(session.audio) == 0
        assert session.is_processing is False
        assert session.task is None

    async def test_second_end_ignored_while_busy(self, controller, socket, transcriber):
        transcriber.gate = asyncio.Event()
        session = await controller.open("h", socket, {})

        await speak(controller, session)
        await asyncio.sleep(0)
        assert session.is_processing is True
        await controller.handle(session, EndOfUtterance(end=True))
        transcriber.gate.set()
        await settle(session)

        assert len(transcriber.calls) == 1
        assert len(socket.of_type("done")) == 1

    async def test_audio_during_turn_is_discarded_with_it(self, controller, socket, transcriber):
        transcriber.gate = asyncio.Event()
        session = await controller.open("h", socket, {})

        await speak(controller, session, b"first")
        await asyncio.sleep(0)
        await controller.handle(session, AudioChunk(data=b"late"))
        transcriber.gate.set()
        await settle(session)

        assert transcriber.calls[0][0] == [b"first"]
        assert len(session.audio) == 0

    async def test_audio_during_other_action_is_flushed(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "dialogue"})
        release = asyncio.Event()

        controller.spawn(session, release.wait, "opening line")
        await controller.handle(session, AudioChunk(data=b"stale"))
        release.set()
        await settle(session)

        assert len(session.audio) == 0
        assert session.is_processing is False

    async def test_audio_kept_while_question_waits(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "quiz"})
        await settle(session)
        release = asyncio.Event()

        controller.spawn(session, release.wait, "quiz question")
        await controller.handle(session, AudioChunk(data=b"answer"))
        release.set()
        await settle(session)

        assert session.audio.snapshot() == [b"answer"]

    async def test_failure_reported_and_session_reset(self, controller, socket, transcriber):
        transcriber.queue.append(UpstreamTransportError("Deepgram STT failed: refused"))
        session = await controller.open("h", socket, {})

        await speak(controller, session)
        await settle(session)

        assert socket.errors == ["Deepgram STT failed: refused"]
        assert len(session.audio) == 0
        assert session.is_processing is False

        await speak(controller, session)
        await settle(session)
        assert len(socket.of_type("done")) == 1

    async def test_unexpected_error_reported_generically(self, controller, socket, transcriber):
        transcriber.queue.append(RuntimeError("kaboom"))
        session = await controller.open("h", socket, {})

        await speak(controller, session)
        await settle(session)

        assert socket.errors == ["Processing failed: kaboom"]
        assert session.is_processing is False


class TestDialogue:
    async def test_start_conversation_once(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "dialogue"})

        await controller.handle(session, StartConversation(type="start_conversation", scenario="cafe"))
        await settle(session)
        await controller.handle(session, StartConversation(type="start_conversation", scenario="cafe"))
        await settle(session)

        openings = [m for m in socket.messages if "correction" in m]
        assert openings[0]["correction"] == "¡Hola! Bienvenido a nuestro café. ¿Qué te gustaría tomar hoy?"
        assert len(openings) == 1

    async def test_start_conversation_ignored_in_echo(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "echo"})

        await controller.handle(session, StartConversation(type="start_conversation"))
        await settle(session)

        assert socket.sent == []


class TestQuizRouting:
    async def test_audio_without_waiting_question_discarded(self, controller, socket, transcriber, model):
        model.route("Generate a unique quiz question", UpstreamTransportError("down"))
        session = await controller.open("h", socket, {"mode": "quiz"})
        await settle(session)

        await speak(controller, session)
        await settle(session)

        assert transcriber.calls == []
        assert len(session.audio) == 0

    async def test_quiz_action_outside_quiz_ignored(self, controller, socket):
        session = await controller.open("h", socket, {"mode": "echo"})

        await controller.handle(session, QuizAction(action="end_quiz"))
        await asyncio.gather(*list(session.background))

        assert socket.sent == []

    async def test_spoken_answer_through_controller(self, controller, socket, transcriber):
        session = await controller.open("h", socket, {"mode": "quiz", "questions": "2"})
        await settle(session)
        transcriber.push("Mi comida favorita es la paella")

        await speak(controller, session)
        await settle(session)

        assert socket.of_type("quiz_feedback")[0]["isCorrect"] is True

    async def test_end_quiz_bypasses_busy_gate(self, controller, socket, transcriber):
        session = await controller.open("h", socket, {"mode": "quiz", "questions": "3"})
        await settle(session)
        transcriber.gate = asyncio.Event()

        await speak(controller, session)
        await asyncio.sleep(0)
        assert session.is_processing is True
        await controller.handle(session, QuizAction(action="end_quiz"))
        await asyncio.gather(*list(session.background))
        assert socket.of_type("quiz_ended_early")
        transcriber.gate.set()
        await settle(session)

        ended = socket.of_type("quiz_ended_early")[0]
        assert ended["questionsAnswered"] == 0
        assert socket.of_type("quiz_feedback") == []
        assert session.quiz is None

    async def test_gated_action_ignored_while_busy(self, controller, socket, transcriber):
        session = await controller.open("h", socket, {"mode": "quiz", "questions": "3"})
        await settle(session)
        transcriber.gate = asyncio.Event()
        transcriber.push("Mi comida favorita es la paella")

        await speak(controller, session)
        await asyncio.sleep(0)
        await controller.handle(session, QuizAction(action="skip_question"))
        transcriber.gate.set()
        await settle(session)

        feedback = socket.of_type("quiz_feedback")
        assert len(feedback) == 1
        assert feedback[0]["isCorrect"] is True

    async def test_full_quiz_paced_by_client(self, controller, socket, transcriber, model):
        session = await controller.open("h", socket, {"mode": "quiz", "questions": "2"})
        await settle(session)

        await controller.handle(session, QuizAction(action="skip_question"))
        await settle(session)
        await controller.handle(session, QuizAction(action="next_question"))
        await settle(session)
        transcriber.push("Estoy bien, gracias")
        await speak(controller, session)
        await settle(session)
        await controller.handle(session, QuizAction(action="final_audio_completed"))
        await settle(session)

        assert [m["questionNumber"] for m in socket.of_type("quiz_question")] == [1, 2]
        assert [m["hasMoreQuestions"] for m in socket.of_type("quiz_feedback")] == [True, False]
        summary = socket.of_type("quiz_summary")[0]
        assert summary["score"] == 1
        assert summary["percentage"] == 50
        assert len(summary["questions"]) == 2
