"""Arpeggios built from chord names or explicit note lists."""

import re
import typing

import cliptune.errors
import cliptune.theory


MIN_COUNT = 2
MAX_COUNT = 8

ChordsInput = typing.Union[str, typing.Sequence[typing.Sequence[str]]]


def _shift_octave (note: str, shift: int) -> str:

	match = re.match(r"^(.*?)(-?\d+)$", note)

	if not match:
		raise cliptune.errors.ResolutionError(f"Invalid note name: {note!r}")

	return f"{match.group(1)}{int(match.group(2)) + shift}"


def _extend (notes: typing.List[str], count: int) -> typing.List[str]:

	"""Repeat chord tones an octave up (and further) until there are ``count`` of them."""

	extended: typing.List[str] = []
	octave = 0

	while len(extended) < count:
		for note in notes:
			if len(extended) == count:
				break
			extended.append(_shift_octave(note, octave))
		octave += 1

	return extended


def arp (chords: ChordsInput, count: int = 4, order: typing.Optional[str] = None) -> typing.List[str]:

	"""
	Arpeggiate each chord into ``count`` notes, reordered by ``order``.

	``chords`` is a space-separated string of chord names or a list of note
	lists. Each chord's tones are extended upwards by octaves to ``count``
	notes; ``order`` is a string of zero-based digits indexing into them and
	defaults to ascending.

	Example:
		```python
		arp("CM_4 FM_4")
		# ['C4', 'E4', 'G4', 'C5', 'F4', 'A4', 'C5', 'F5']

		arp("CM_4", count=8, order="76543210")[0]   # 'E6'
		```
	"""

	if isinstance(count, bool) or not isinstance(count, int) or not MIN_COUNT <= count <= MAX_COUNT:
		raise cliptune.errors.ValidationError("Invalid value for count")

	if order is None:
		order = "".join(str(i) for i in range(count))

	if not isinstance(order, str) or not re.match(r"^\d+$", order) or any(int(digit) >= count for digit in order):
		raise cliptune.errors.ValidationError("Invalid value for order")

	if isinstance(chords, str):
		chord_notes = [cliptune.theory.chord(name) for name in chords.split()]

	elif isinstance(chords, (list, tuple)):
		chord_notes = []
		for item in chords:
			chord_notes.append(list(cliptune.theory.convert_chords_to_notes(item)))

	else:
		raise cliptune.errors.ValidationError("Invalid value for chords")

	result: typing.List[str] = []

	for notes in chord_notes:
		extended = _extend(notes, count)
		result.extend(extended[int(digit)] for digit in order)

	return result
