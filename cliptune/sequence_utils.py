import math
import random
import typing

import cliptune.constants.velocity

T = typing.TypeVar("T")


SIZZLE_STYLES = ("sin", "cos", "rampUp", "rampDown")


def shuffle (items: typing.List[T], full_shuffle: bool = True, rng: typing.Optional[random.Random] = None) -> typing.List[T]:

	"""
	Shuffle a list in place and return it.

	With ``full_shuffle`` every element is swapped with a strictly later one,
	so no element stays in its original slot (Sattolo's variant of
	Fisher-Yates). Without it this is the plain Fisher-Yates shuffle.
	"""

	rng = rng or random.Random()
	last_index = len(items) - 1

	for i in range(last_index):

		if full_shuffle:
			j = rng.randint(i + 1, last_index)
		else:
			j = rng.randint(i, last_index)

		items[i], items[j] = items[j], items[i]

	return items


def pick_one (items: typing.Sequence[T], rng: typing.Optional[random.Random] = None) -> T:

	"""Pick one item uniformly at random."""

	if not items:
		raise ValueError("Cannot pick from an empty sequence")

	return (rng or random).choice(items)


def dice (rng: typing.Optional[random.Random] = None) -> bool:

	"""A coin toss."""

	return (rng or random).random() < 0.5


def random_int (upper: int = 1, rng: typing.Optional[random.Random] = None) -> int:

	"""Random integer from 0 to ``upper`` inclusive."""

	return (rng or random).randint(0, upper)


def sizzle_map (max_level: int = cliptune.constants.velocity.MAX_VELOCITY) -> typing.List[int]:

	"""
	A 16-step half-sine swell from near silence up to ``max_level`` and back.
	"""

	rising = [math.pi / 6, math.pi / 4, math.pi / 3, math.pi / 2, 2 * math.pi / 3, 3 * math.pi / 4, 5 * math.pi / 6, math.pi]
	falling = list(reversed([0, math.pi / 6, math.pi / 4, math.pi / 3, math.pi / 2, 2 * math.pi / 3, 3 * math.pi / 4, 5 * math.pi / 6]))

	return [round(math.sin(angle) * max_level) for angle in rising + falling]


def sizzle_levels (
	count: int,
	style: typing.Union[bool, str] = "sin",
	reps: int = 1,
	high: int = cliptune.constants.velocity.DEFAULT_AMP,
	low: int = cliptune.constants.velocity.DEFAULT_ACCENT_LOW
) -> typing.List[int]:

	"""
	Levels for ``count`` consecutive notes shaped by a sizzle curve.

	The curve runs ``reps`` times across the notes and is scaled between
	``low`` and ``high``.

	Parameters:
		count: Number of notes in one cycle
		style: ``"sin"`` (or ``True``), ``"cos"``, ``"rampUp"`` or ``"rampDown"``
		reps: How many times the curve repeats over the notes
		high: Level at the top of the curve
		low: Level at the bottom of the curve
	"""

	if style is True:
		style = "sin"

	if style not in SIZZLE_STYLES:
		raise ValueError(f"Unknown sizzle style {style!r}. Expected one of {SIZZLE_STYLES}")

	if count <= 0:
		return []

	reps = max(1, reps)
	levels: typing.List[int] = []

	for i in range(count):

		phase = (i * reps / count) % 1.0

		if style == "sin":
			shape = math.sin(math.pi * phase)
		elif style == "cos":
			shape = abs(math.cos(math.pi * phase))
		elif style == "rampUp":
			shape = phase
		else:
			shape = 1.0 - phase

		levels.append(round(low + (high - low) * shape))

	return levels
