"""Exceptions raised across the tutoring pipeline.

Every message is safe to show to the learner: the connection handler turns any
``TutorError`` into an ``{"error": ...}`` event without further formatting.
"""


class TutorError(Exception):
	"""Base exception for tutoring pipeline errors."""
	pass


class ValidationError(TutorError):
	"""Bad or missing input supplied by the client."""
	pass


class UnsupportedLanguage(ValidationError):
	"""Language code outside the supported table."""
	pass


class InvalidInput(ValidationError):
	"""Empty or malformed audio/text input."""
	pass


class InvalidMode(ValidationError):
	"""Mode is not one of echo, dialogue or quiz."""
	pass


class MissingCredential(ValidationError):
	"""An upstream API key is not configured."""
	pass


class UpstreamTransportError(TutorError):
	"""Recognizer, model or synthesizer could not be reached."""
	pass


class TranscriptionTimeout(UpstreamTransportError):
	"""Recognizer did not finalize before the hard ceiling."""
	pass


class UpstreamFormatError(TutorError):
	"""Model replied with something that is not the expected JSON."""
	pass


class ProtocolError(TutorError):
	"""Inbound control frame could not be decoded."""
	pass


class FatalSessionError(TutorError):
	"""No session is registered for the connection."""
	pass
