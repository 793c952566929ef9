"""Exception hierarchy for cliptune.

- ``ValidationError`` - bad patterns, missing or conflicting configuration.
  Always raised synchronously by the call that received the bad input.
- ``ResolutionError`` - a note, chord or progression that cannot be resolved.
- ``AcquisitionError`` - a sound source failed to load or initialise. Raised
  inside the asynchronous channel lifecycle and delivered to the channel's
  ``"error"`` listeners, never into unrelated code.
- ``TriggerError`` - a single note failed to sound. Reported per event;
  playback continues.
"""


class CliptuneError (Exception):
	pass


class ValidationError (CliptuneError, ValueError):
	pass


class InvalidPatternError (ValidationError):
	pass


class ConfigurationError (ValidationError):
	pass


class ClipError (ValidationError):

	"""A clip inside a channel failed to build; the message ends with ``in clip <n>``."""

	def __init__ (self, message: str, clip_number: int) -> None:

		super().__init__(f"{message} in clip {clip_number}")
		self.clip_number = clip_number


class ResolutionError (CliptuneError, ValueError):
	pass


class AcquisitionError (CliptuneError):
	pass


class TriggerError (CliptuneError):

	"""Wraps whatever a producer raised while sounding one step."""

	def __init__ (self, message: str, counter: int) -> None:

		super().__init__(message)
		self.counter = counter
