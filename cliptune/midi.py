"""Standard MIDI File export of sequential note objects."""

import dataclasses
import io
import logging
import typing

import mido

import cliptune.constants
import cliptune.constants.velocity
import cliptune.theory


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class NoteObject:

	"""
	One entry of a sequential note list.

	``note`` is a list of note names (a chord), a single name, or ``None`` for
	a rest; ``length`` is in quarter notes; ``level`` is the velocity.
	"""

	note: typing.Union[typing.List[str], str, None]
	length: float
	level: int = cliptune.constants.velocity.DEFAULT_AMP


def _note_numbers (note: typing.Union[typing.List[str], str, None]) -> typing.List[int]:

	if note is None:
		return []

	if isinstance(note, str):
		note = [note]

	return [cliptune.theory.note_to_midi(name) for name in note]


def to_midi_file (notes: typing.Sequence[NoteObject], bpm: typing.Optional[float] = None, channel: int = 0) -> mido.MidiFile:

	"""
	Lay the notes end to end on one track.

	Each note (or chord) starts when the previous one ends; rests only move
	time forward. A tempo message is written when ``bpm`` is given.
	"""

	mid = mido.MidiFile(type=1)
	mid.ticks_per_beat = cliptune.constants.MIDI_FILE_TICKS_PER_BEAT

	track = mido.MidiTrack()
	mid.tracks.append(track)

	if bpm is not None:
		track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm), time=0))

	pending = 0

	for item in notes:

		ticks = int(round(item.length * mid.ticks_per_beat))
		numbers = _note_numbers(item.note)

		if not numbers:
			pending += ticks
			continue

		velocity = max(0, min(127, int(item.level)))

		for i, number in enumerate(numbers):
			track.append(mido.Message("note_on", channel=channel, note=number, velocity=velocity, time=pending if i == 0 else 0))

		for i, number in enumerate(numbers):
			track.append(mido.Message("note_off", channel=channel, note=number, velocity=0, time=ticks if i == 0 else 0))

		pending = 0

	return mid


def encode (notes: typing.Sequence[NoteObject], bpm: typing.Optional[float] = None) -> bytes:

	"""The notes as the bytes of a Standard MIDI File."""

	buffer = io.BytesIO()
	to_midi_file(notes, bpm).save(file=buffer)

	return buffer.getvalue()


def write (notes: typing.Sequence[NoteObject], filename: str = "music.mid", bpm: typing.Optional[float] = None) -> str:

	"""
	Write the notes to ``filename`` (``.mid`` is appended when missing) and return the path used.
	"""

	if not filename.endswith(".mid"):
		filename = f"{filename}.mid"

	to_midi_file(notes, bpm).save(filename)

	logger.info(f"Wrote {len(notes)} note objects to {filename}")

	return filename
