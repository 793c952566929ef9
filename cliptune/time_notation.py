"""Musical time notation.

Transport positions and lengths can be given as:

- note values: ``"4n"`` (quarter), ``"8n"``, ``"16n"``, dotted ``"4n."``,
  triplets ``"8t"``
- measures: ``"1m"``, ``"0.75m"``
- bars:beats:sixteenths: ``"4:0:0"``, ``"1:2"``
- raw ticks: ``"96i"`` or a ``Ticks`` instance
- seconds: any ``int``/``float`` or a numeric string such as ``"1.5"``

The meter is fixed at 4/4.
"""

import re
import typing

import cliptune.constants
import cliptune.errors


class Ticks (float):

	"""A position or length that is already expressed in transport ticks.

	Plain numbers are seconds; wrap a value in ``Ticks`` to schedule on the
	tick grid directly.
	"""

	def __repr__ (self) -> str:

		return f"Ticks({float(self)!r})"


TimeValue = typing.Union[str, int, float, Ticks]

_NOTE_VALUE = re.compile(r"^(\d+(?:\.\d+)?)([nmti])(\.?)$")
_BARS_BEATS = re.compile(r"^(\d+(?:\.\d+)?):(\d+(?:\.\d+)?)(?::(\d+(?:\.\d+)?))?$")


def seconds_to_ticks (seconds: float, bpm: float, ppq: int = cliptune.constants.TICKS_PER_QUARTER) -> float:

	"""Convert seconds to ticks at a fixed tempo."""

	return seconds * bpm / 60.0 * ppq


def ticks_to_seconds (ticks: float, bpm: float, ppq: int = cliptune.constants.TICKS_PER_QUARTER) -> float:

	"""Convert ticks to seconds at a fixed tempo."""

	return ticks * 60.0 / (bpm * ppq)


def _parse_notation (text: str, ppq: int) -> typing.Optional[float]:

	"""Return ticks for note-value or bars:beats notation, or None if the text is neither."""

	measure = ppq * cliptune.constants.BEATS_PER_MEASURE

	match = _NOTE_VALUE.match(text)

	if match:

		amount = float(match.group(1))
		unit = match.group(2)
		dotted = match.group(3) == "."

		if unit == "m":
			ticks = amount * measure

		elif unit == "i":
			ticks = amount

		else:
			if amount == 0:
				raise cliptune.errors.ValidationError(f"Note value cannot be zero: {text!r}")

			ticks = measure / amount

			if unit == "t":
				ticks = ticks * 2 / 3

		if dotted:
			ticks *= 1.5

		return ticks

	match = _BARS_BEATS.match(text)

	if match:
		bars = float(match.group(1))
		beats = float(match.group(2))
		sixteenths = float(match.group(3) or 0)
		return bars * measure + beats * ppq + sixteenths * ppq / 4

	return None


def to_ticks (value: TimeValue, bpm: float, ppq: int = cliptune.constants.TICKS_PER_QUARTER) -> float:

	"""
	Convert any supported time value to ticks.

	Example:
		```python
		to_ticks("4n", 120)        # 192.0
		to_ticks("1m", 120)        # 768.0
		to_ticks(0.5, 120)         # 192.0 (half a second at 120 BPM)
		to_ticks(Ticks(96), 120)   # 96.0
		```
	"""

	if isinstance(value, Ticks):
		return float(value)

	if isinstance(value, bool):
		raise cliptune.errors.ValidationError(f"Cannot parse time value {value!r}")

	if isinstance(value, (int, float)):
		return seconds_to_ticks(float(value), bpm, ppq)

	if isinstance(value, str):

		text = value.strip()
		ticks = _parse_notation(text, ppq)

		if ticks is not None:
			return ticks

		try:
			return seconds_to_ticks(float(text), bpm, ppq)
		except ValueError:
			pass

	raise cliptune.errors.ValidationError(f"Cannot parse time value {value!r}")


def to_seconds (value: TimeValue, bpm: float, ppq: int = cliptune.constants.TICKS_PER_QUARTER) -> float:

	"""Convert any supported time value to seconds."""

	if isinstance(value, (int, float)) and not isinstance(value, (Ticks, bool)):
		return float(value)

	return ticks_to_seconds(to_ticks(value, bpm, ppq), bpm, ppq)
