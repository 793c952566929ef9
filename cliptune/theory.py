"""Notes, scales and chords.

Note names carry an octave (``"C4"``, ``"F#3"``, ``"Bb2"``) with C4 = MIDI 60.
Scales are written ``"<root> <mode>"`` (``"C4 major"``, ``"D harmonic minor"``;
the octave defaults to 4). Chords are written inline as ``<root><quality>_<octave>``
(``"CM_4"``, ``"Dbsus2_5"``, ``"Cmaj7"``) or with a space (``"C4 maj7"``).

Module-level constants:
- ``NOTE_NAME_TO_PC``: note names to pitch classes (0-11)
- ``SCALE_INTERVALS``: mode names to semitone offsets from the root
- ``CHORD_INTERVALS``: chord quality names to semitone offsets from the root
"""

import re
import typing

import cliptune.errors


NOTE_NAME_TO_PC: typing.Dict[str, int] = {
	"C": 0,
	"C#": 1,
	"Db": 1,
	"D": 2,
	"D#": 3,
	"Eb": 3,
	"E": 4,
	"Fb": 4,
	"E#": 5,
	"F": 5,
	"F#": 6,
	"Gb": 6,
	"G": 7,
	"G#": 8,
	"Ab": 8,
	"A": 9,
	"A#": 10,
	"Bb": 10,
	"B": 11,
	"Cb": 11,
	"B#": 0,
}

SHARP_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
FLAT_NAMES = ["C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B"]

DEFAULT_OCTAVE = 4

SCALE_INTERVALS: typing.Dict[str, typing.List[int]] = {
	"ionian": [0, 2, 4, 5, 7, 9, 11],
	"dorian": [0, 2, 3, 5, 7, 9, 10],
	"phrygian": [0, 1, 3, 5, 7, 8, 10],
	"lydian": [0, 2, 4, 6, 7, 9, 11],
	"mixolydian": [0, 2, 4, 5, 7, 9, 10],
	"aeolian": [0, 2, 3, 5, 7, 8, 10],
	"locrian": [0, 1, 3, 5, 6, 8, 10],
	"melodic minor": [0, 2, 3, 5, 7, 9, 11],
	"harmonic minor": [0, 2, 3, 5, 7, 8, 11],
	"phrygian dominant": [0, 1, 4, 5, 7, 8, 10],
	"hungarian minor": [0, 2, 3, 6, 7, 8, 11],
	"double harmonic": [0, 1, 4, 5, 7, 8, 11],
	"major pentatonic": [0, 2, 4, 7, 9],
	"minor pentatonic": [0, 3, 5, 7, 10],
	"blues": [0, 3, 5, 6, 7, 10],
	"whole tone": [0, 2, 4, 6, 8, 10],
	"chromatic": [0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11],
}

SCALE_ALIASES: typing.Dict[str, str] = {
	"major": "ionian",
	"minor": "aeolian",
}

CHORD_INTERVALS: typing.Dict[str, typing.List[int]] = {
	"M": [0, 4, 7],
	"m": [0, 3, 7],
	"5": [0, 7],
	"dim": [0, 3, 6],
	"M#5": [0, 4, 8],
	"sus2": [0, 2, 7],
	"sus4": [0, 5, 7],
	"6": [0, 4, 7, 9],
	"m6": [0, 3, 7, 9],
	"7": [0, 4, 7, 10],
	"maj7": [0, 4, 7, 11],
	"m7": [0, 3, 7, 10],
	"mMaj7": [0, 3, 7, 11],
	"dim7": [0, 3, 6, 9],
	"m7b5": [0, 3, 6, 10],
	"M7b5": [0, 4, 6, 11],
	"7sus4": [0, 5, 7, 10],
	"add9": [0, 4, 7, 14],
	"9": [0, 4, 7, 10, 14],
	"maj9": [0, 4, 7, 11, 14],
	"m9": [0, 3, 7, 10, 14],
}

CHORD_ALIASES: typing.Dict[str, str] = {
	"": "M",
	"maj": "M",
	"major": "M",
	"min": "m",
	"minor": "m",
	"aug": "M#5",
	"+": "M#5",
	"M7": "maj7",
	"dom7": "7",
}

_NOTE = re.compile(r"^([a-gA-G](?:#|b)?)(-?\d+)$")
_VALID_NOTE = re.compile(r"^[a-gA-G](?:#|b)?\d$")
_INLINE_CHORD = re.compile(r"^([A-Ga-g](?:#|b)?)([^_\s]*?)(?:_(-?\d+))?$")


def is_note (name: str) -> bool:

	"""True for a single note name with octave such as ``"C4"`` or ``"db3"``; False for ``"CM"`` or ``"C4th"``."""

	return bool(_VALID_NOTE.match(name))


def _normalise_root (root: str) -> str:

	return root[0].upper() + root[1:]


def note_to_midi (name: str) -> int:

	"""
	MIDI number of a note name.

	Example:
		```python
		note_to_midi("C4")    # 60
		note_to_midi("Bb2")   # 46
		```
	"""

	match = _NOTE.match(name.strip())

	if not match:
		raise cliptune.errors.ResolutionError(f"Invalid note name: {name!r}")

	root = _normalise_root(match.group(1))
	octave = int(match.group(2))

	if root not in NOTE_NAME_TO_PC:
		raise cliptune.errors.ResolutionError(f"Invalid note name: {name!r}")

	pc = NOTE_NAME_TO_PC[root]

	# B#4 is C5 and Cb4 is B3.
	if root == "B#":
		octave += 1
	elif root == "Cb":
		octave -= 1

	return (octave + 1) * 12 + pc


def midi_to_note (number: int, flats: bool = False) -> str:

	"""Note name (with octave) of a MIDI number."""

	names = FLAT_NAMES if flats else SHARP_NAMES

	return f"{names[number % 12]}{number // 12 - 1}"


def _prefers_flats (root: str, intervals: typing.Sequence[int]) -> bool:

	"""Spell with flats for flat roots, F, and minor-third sets built on D, G, C or F."""

	if "b" in root[1:]:
		return True

	if "#" in root:
		return False

	if root == "F":
		return True

	minor_third = 3 in intervals and 4 not in intervals

	return minor_third and root in ("D", "G", "C")


def _spell (root: str, octave: int, intervals: typing.Sequence[int]) -> typing.List[str]:

	base = note_to_midi(f"{root}{octave}")
	flats = _prefers_flats(root, intervals)

	return [midi_to_note(base + interval, flats) for interval in intervals]


def scale_intervals (mode: str) -> typing.List[int]:

	"""Intervals of a mode name; raises ``ResolutionError`` for unknown modes."""

	key = mode.strip().lower()
	key = SCALE_ALIASES.get(key, key)

	if key not in SCALE_INTERVALS:
		raise cliptune.errors.ResolutionError(f"Unknown scale or mode: {mode!r}")

	return SCALE_INTERVALS[key]


def split_key (root_and_mode: str) -> typing.Tuple[str, int, str]:

	"""
	Split ``"C4 major"`` into ``("C", 4, "major")``; the octave defaults to 4.
	"""

	parts = root_and_mode.strip().split(None, 1)

	if len(parts) != 2:
		raise cliptune.errors.ResolutionError(f"Expected '<root> <mode>', got {root_and_mode!r}")

	root_text, mode = parts
	match = _NOTE.match(root_text)

	if match:
		root = _normalise_root(match.group(1))
		octave = int(match.group(2))

	elif re.match(r"^[a-gA-G](?:#|b)?$", root_text):
		root = _normalise_root(root_text)
		octave = DEFAULT_OCTAVE

	else:
		raise cliptune.errors.ResolutionError(f"Invalid root note {root_text!r} in {root_and_mode!r}")

	return root, octave, mode.strip()


def scale (root_and_mode: str) -> typing.List[str]:

	"""
	Note names of a scale, ascending from the root.

	Example:
		```python
		scale("C4 major")   # ['C4', 'D4', 'E4', 'F4', 'G4', 'A4', 'B4']
		scale("A minor")    # ['A4', 'B4', 'C5', 'D5', 'E5', 'F5', 'G5']
		```
	"""

	root, octave, mode = split_key(root_and_mode)

	return _spell(root, octave, scale_intervals(mode))


def chord_intervals (quality: str) -> typing.List[int]:

	"""Intervals of a chord quality name; raises ``ResolutionError`` for unknown names."""

	key = CHORD_ALIASES.get(quality, quality)

	if key not in CHORD_INTERVALS:
		raise cliptune.errors.ResolutionError(f"Unknown chord quality: {quality!r}")

	return CHORD_INTERVALS[key]


def chord (name: str) -> typing.List[str]:

	"""
	Note names of a chord.

	Example:
		```python
		chord("CM_4")       # ['C4', 'E4', 'G4']
		chord("Cmaj7")      # ['C4', 'E4', 'G4', 'B4']
		chord("D3 m")       # ['D3', 'F3', 'A3']
		chord("Dbsus2_5")   # ['Db5', 'Eb5', 'Ab5']
		```
	"""

	text = name.strip()
	parts = text.split()

	if len(parts) == 2 and _NOTE.match(parts[0]):
		match = _NOTE.match(parts[0])
		root = _normalise_root(match.group(1))
		octave = int(match.group(2))
		quality = parts[1]

	elif len(parts) == 2 and parts[1].lstrip("-").isdigit():
		return chord(f"{parts[0]}_{parts[1]}")

	else:
		match = _INLINE_CHORD.match(text)

		if not match:
			raise cliptune.errors.ResolutionError(f"Cannot decode chord {name}")

		root = _normalise_root(match.group(1))
		quality = match.group(2)
		octave = int(match.group(3)) if match.group(3) is not None else DEFAULT_OCTAVE

	if root not in NOTE_NAME_TO_PC:
		raise cliptune.errors.ResolutionError(f"Cannot decode chord {name}")

	try:
		intervals = chord_intervals(quality)
	except cliptune.errors.ResolutionError:
		raise cliptune.errors.ResolutionError(f"Cannot decode chord {name}") from None

	return _spell(root, octave, intervals)


def convert_chord_to_notes (name: str) -> typing.List[str]:

	"""Expand a chord name (``"CM_4"``, ``"Cmaj7"``, ``"C4 M"``) to note names."""

	return chord(name)


NoteElement = typing.Union[str, typing.Sequence[typing.Any]]


def convert_chords_to_notes (element: NoteElement) -> typing.List[typing.Any]:

	"""
	Normalise one entry of a note pool to a list of notes.

	Single notes become ``["C4"]``; chord names are expanded; lists of notes
	(a chord given explicitly) are validated and returned as they are.
	"""

	if isinstance(element, str) and is_note(element):
		return [element]

	if isinstance(element, (list, tuple)):

		for item in element:

			if isinstance(item, (list, tuple)):
				for inner in item:
					if not isinstance(inner, str) or not is_note(inner):
						raise cliptune.errors.ResolutionError("array of arrays must comprise valid notes")

			elif not isinstance(item, str) or not is_note(item):
				raise cliptune.errors.ResolutionError("array must comprise valid notes")

		return list(element)

	if isinstance(element, str):

		try:
			notes = convert_chord_to_notes(element)
		except cliptune.errors.ResolutionError:
			raise cliptune.errors.ResolutionError(f"Chord {element} not found") from None

		if notes:
			return notes

	raise cliptune.errors.ResolutionError(f"Chord {element} not found")
