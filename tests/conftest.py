import typing

import mido
import pytest

import cliptune.engine


class FakeMidiOut:

	"""MIDI output stub for tests; keeps every message it is sent."""

	def __init__ (self, name: str = "Dummy MIDI") -> None:

		self.name = name
		self.sent: typing.List[mido.Message] = []
		self.closed = False


	def send (self, message: mido.Message) -> None:

		"""Keep outgoing MIDI messages for inspection."""

		self.sent.append(message)


	def close (self) -> None:

		self.closed = True


class FailingMidiOut (FakeMidiOut):

	"""A port whose device has gone away."""

	def send (self, message: mido.Message) -> None:

		raise IOError("device disconnected")


# Module-level list so tests can reach the ports opened while they ran.
opened_outputs: typing.List[FakeMidiOut] = []


def _fake_get_output_names () -> typing.List[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI", "Other MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	port = FakeMidiOut(name)
	opened_outputs.append(port)
	return port


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> typing.List[FakeMidiOut]:

	"""Patch mido to use fake MIDI outputs; returns the list of ports opened during the test."""

	opened_outputs.clear()
	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)
	return opened_outputs


@pytest.fixture
def no_midi_ports (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido so that no MIDI output is available."""

	monkeypatch.setattr(mido, "get_output_names", lambda: [])


@pytest.fixture(autouse=True)
def reset_default_context () -> typing.Iterator[None]:

	"""Give every test a fresh process-wide context."""

	previous = cliptune.engine.set_default_context(None)
	yield
	cliptune.engine.set_default_context(previous)


@pytest.fixture
def offline_context () -> cliptune.engine.AudioContext:

	"""A render-mode context that records and opens no port."""

	return cliptune.engine.AudioContext.offline(bpm=120)
