"""Tests for Murf speech synthesis."""
import httpx
import pytest

from conftest import MurfStub, make_settings
from vocalearn.protocol import AudioMessage, ErrorMessage
from vocalearn.speech import SpeechSynthesizer


class Outbox:
    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)


def make_speech(murf, **overrides):
    client = httpx.AsyncClient(transport=httpx.MockTransport(murf))
    return SpeechSynthesizer(make_settings(**overrides), client=client)


class TestSynthesize:
    async def test_success_sends_audio_url(self):
        murf = MurfStub()
        outbox = Outbox()

        url = await make_speech(murf).synthesize(outbox, "Hola", "es-ES", label="explanation")

        assert url == "https://audio.test/1.wav"
        assert outbox.messages == [AudioMessage(audio_url=url, label="explanation")]

    async def test_request_uses_language_voice_and_key(self):
        murf = MurfStub()

        await make_speech(murf).synthesize(Outbox(), "Bonjour", "fr-FR")

        request = murf.requests[0]
        assert request["headers"]["api-key"] == "murf-test"
        assert request["json"]["voiceId"] == "fr-FR-maxime"
        assert request["json"]["format"] == "WAV"
        assert request["json"]["sampleRate"] == 44100
        assert request["json"]["text"] == "Bonjour"

    async def test_unknown_language_uses_default_voice(self):
        murf = MurfStub()

        await make_speech(murf).synthesize(Outbox(), "Hej", "sv-SE")

        assert murf.requests[0]["json"]["voiceId"] == "en-US-paul"

    @pytest.mark.parametrize("text", ["", "   "])
    async def test_empty_text_reports_error_without_calling_murf(self, text):
        murf = MurfStub()
        outbox = Outbox()

        url = await make_speech(murf).synthesize(outbox, text, "es-ES")

        assert url == ""
        assert murf.requests == []
        assert outbox.messages == [ErrorMessage(error="TTS Error: No text to synthesize")]

    async def test_missing_key(self):
        murf = MurfStub()
        outbox = Outbox()
        speech = make_speech(murf, MURF_API_KEY=None)

        url = await speech.synthesize(outbox, "Hola", "es-ES")

        assert url == ""
        assert speech.configured is False
        assert outbox.messages == [ErrorMessage(error="TTS Error: Murf API key is missing")]

    async def test_http_failure_becomes_error_event(self):
        murf = MurfStub()
        murf.fail_with = 500
        outbox = Outbox()

        url = await make_speech(murf).synthesize(outbox, "Hola", "es-ES")

        assert url == ""
        assert len(outbox.messages) == 1
        assert outbox.messages[0].error.startswith("TTS Error:")

    async def test_response_without_audio_file(self):
        def handler(request):
            return httpx.Response(200, json={"encodedAudio": None})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        outbox = Outbox()

        url = await SpeechSynthesizer(make_settings(), client=client).synthesize(outbox, "Hola", "es-ES")

        assert url == ""
        assert outbox.messages == [ErrorMessage(error="TTS Error: No audio URL returned from Murf")]
