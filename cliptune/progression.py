"""Roman-numeral harmony: chord degrees of modes, numeral progressions to chord names, and random progressions."""

import random
import re
import typing

import cliptune.errors
import cliptune.theory


ROMAN_NUMERALS = ["i", "ii", "iii", "iv", "v", "vi", "vii"]

# Tonic, predominant and dominant functions per scale type.
FUNCTIONS: typing.Dict[str, typing.Dict[str, typing.List[str]]] = {
	"major": {
		"T": ["I", "vi"],
		"P": ["ii", "IV"],
		"D": ["V", "vii°"],
	},
	"minor": {
		"T": ["i", "VI"],
		"P": ["ii°", "iv"],
		"D": ["V", "VII"],
	},
}

SCALE_TYPE_ALIASES: typing.Dict[str, str] = {
	"major": "major",
	"M": "major",
	"minor": "minor",
	"m": "minor",
}

_NUMERAL = re.compile(r"^(i{1,3}|iv|v|vi{0,2}|I{1,3}|IV|V|VI{0,2})(°|\+)?(7)?$")


def chord_degrees (mode: str) -> typing.List[str]:

	"""
	Roman numerals of the triads built on each degree of a seven-note mode.

	Upper case is major, lower case minor, ``°`` diminished and ``+`` augmented.
	Unknown (or non-heptatonic) modes give an empty list.

	Example:
		```python
		chord_degrees("ionian")   # ['I', 'ii', 'iii', 'IV', 'V', 'vi', 'vii°']
		```
	"""

	try:
		steps = cliptune.theory.scale_intervals(mode)
	except cliptune.errors.ResolutionError:
		return []

	if len(steps) != 7:
		return []

	degrees: typing.List[str] = []

	for i, numeral in enumerate(ROMAN_NUMERALS):

		root = steps[i]
		third = (steps[(i + 2) % 7] - root) % 12
		fifth = (steps[(i + 4) % 7] - root) % 12

		if third == 4 and fifth == 8:
			degrees.append(numeral.upper() + "+")
		elif third == 4:
			degrees.append(numeral.upper())
		elif fifth == 6:
			degrees.append(numeral + "°")
		else:
			degrees.append(numeral)

	return degrees


def _numeral_to_chord (numeral: str, roots: typing.List[str], octave: int) -> str:

	match = _NUMERAL.match(numeral)

	if not match:
		raise cliptune.errors.ResolutionError(f"Invalid chord degree: {numeral!r}")

	body, modifier, seventh = match.groups()
	index = ROMAN_NUMERALS.index(body.lower())
	upper = body.isupper()
	root = roots[index % len(roots)]

	if modifier == "°":
		quality = "M7b5" if upper else "m7b5"
	elif modifier == "+":
		quality = "M#5"
	elif seventh:
		quality = "maj7" if upper else "m7"
	else:
		quality = "M" if upper else "m"

	return f"{root}{quality}_{octave}"


def chords_by_progression (key: str, degrees: str) -> str:

	"""
	Translate space-separated roman numerals to chord names in a key.

	Example:
		```python
		chords_by_progression("C4 major", "I IV V ii")   # 'CM_4 FM_4 GM_4 Dm_4'
		chords_by_progression("C4 major", "I7 ii7")      # 'Cmaj7_4 Dm7_4'
		```
	"""

	root, octave, mode = cliptune.theory.split_key(key)
	scale_notes = cliptune.theory.scale(f"{root}{octave} {mode}")

	# Chord roots keep the key's octave; only the pitch class comes from the scale.
	roots = [re.sub(r"-?\d+$", "", note) for note in scale_notes]

	return " ".join(_numeral_to_chord(numeral, roots, octave) for numeral in degrees.split())


def progression (scale_type: str, count: int = 4, rng: typing.Optional[random.Random] = None) -> typing.List[str]:

	"""
	A random functional progression of ``count`` roman numerals.

	Opens on a tonic, closes on a dominant, and fills the middle with
	predominant chords. ``scale_type`` is ``"major"``/``"M"`` or
	``"minor"``/``"m"``; anything else gives an empty list.
	"""

	kind = SCALE_TYPE_ALIASES.get(scale_type)

	if kind is None:
		return []

	if count < 1:
		raise ValueError(f"count must be positive, got {count}")

	if rng is None:
		rng = random.Random()

	table = FUNCTIONS[kind]
	chords = [rng.choice(table["T"])]

	for _ in range(count - 2):
		chords.append(rng.choice(table["P"]))

	if count > 1:
		chords.append(rng.choice(table["D"]))

	return chords
