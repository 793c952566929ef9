"""Pattern compiler and cycle/duration calculator.

A pattern is a string over ``x - _ [ ] R``:

- ``x``: trigger the next note from the clip's note pool.
- ``R``: trigger a note picked from the random pool (or the next note when
  there is no random pool).
- ``-``: a rest.
- ``_``: sustain - extends the previous step instead of triggering.
- ``[...]``: a group that splits its parent's slot evenly among its children.

Compilation is purely structural; time is assigned afterwards by
``flatten`` and ``assign_durations`` in whatever unit the caller supplies
(seconds for note durations, ticks for scheduling).
"""

import dataclasses
import logging
import re
import typing

import cliptune.constants
import cliptune.errors
import cliptune.time_notation


logger = logging.getLogger(__name__)


PatternTree = typing.List[typing.Any]

NOTE_STEPS = ("x", "R")
REST = "-"
SUSTAIN = "_"

_INVALID_CHARACTER = re.compile(r"[^x\-_\[\]R]")


@dataclasses.dataclass
class Slice:

	"""
	One leaf of a pattern tree placed in time.
	"""

	symbol: str
	time: float
	length: float


@dataclasses.dataclass
class Step:

	"""
	A triggering step after sustains have been merged into it.
	"""

	kind: str
	time: float
	duration: float


def validate_pattern (pattern: str) -> None:

	"""Raise ``InvalidPatternError`` if the pattern contains characters outside ``x - _ [ ] R``."""

	if _INVALID_CHARACTER.search(pattern):
		raise cliptune.errors.InvalidPatternError(f"pattern can only comprise x - _ [ ] R, found {pattern}")


def compile_pattern (pattern: str) -> PatternTree:

	"""
	Compile a pattern string into a nested list.

	Example:
		```python
		compile_pattern("xxx[xx[xx]]")
		# ['x', 'x', 'x', ['x', 'x', ['x', 'x']]]
		```
	"""

	validate_pattern(pattern)

	stack: typing.List[PatternTree] = [[]]

	for char in pattern:

		if char == "[":
			group: PatternTree = []
			stack[-1].append(group)
			stack.append(group)

		elif char == "]":
			if len(stack) <= 1:
				raise cliptune.errors.InvalidPatternError(f"Unexpected closing bracket in pattern {pattern}")
			stack.pop()

		else:
			stack[-1].append(char)

	if len(stack) > 1:
		raise cliptune.errors.InvalidPatternError(f"Missing closing bracket in pattern {pattern}")

	return stack[0]


expand_str = compile_pattern


def flatten (tree: PatternTree, unit: float, start: float = 0.0) -> typing.List[Slice]:

	"""
	Place every leaf of the tree in time.

	Each element at a level owns a slot of ``unit``; a group of K children
	divides its slot into K slots of ``unit / K``. Empty groups produce nothing.
	"""

	slices: typing.List[Slice] = []

	for i, element in enumerate(tree):

		slot_start = start + i * unit

		if isinstance(element, list):
			if element:
				slices = slices + flatten(element, unit / len(element), slot_start)

		else:
			slices.append(Slice(element, slot_start, unit))

	return slices


def merge_sustains (slices: typing.List[Slice]) -> typing.List[Step]:

	"""
	Fold sustains into the preceding step and drop rests.

	A sustain with no preceding step (at the very start of the pattern) is dropped.
	"""

	steps: typing.List[Step] = []

	for item in slices:

		if item.symbol in NOTE_STEPS:
			steps.append(Step(kind=item.symbol, time=item.time, duration=item.length))

		elif item.symbol == SUSTAIN:
			if steps:
				steps[-1].duration += item.length
			else:
				logger.debug(f"Dropping leading sustain at {item.time}")

	return steps


def assign_durations (tree: PatternTree, unit_seconds: float) -> typing.List[Step]:

	"""Compute the triggering steps of a compiled pattern with one top-level slot of ``unit_seconds``."""

	return merge_sustains(flatten(tree, unit_seconds))


def step_seconds (subdiv_or_seconds: typing.Union[str, float], bpm: float = cliptune.constants.DEFAULT_BPM) -> float:

	"""Length of one top-level slot in seconds; numbers are taken as seconds already."""

	if isinstance(subdiv_or_seconds, (int, float)) and not isinstance(subdiv_or_seconds, cliptune.time_notation.Ticks):
		return float(subdiv_or_seconds)

	return cliptune.time_notation.to_seconds(subdiv_or_seconds, bpm)


def total_pattern_duration (pattern: str, subdiv_or_seconds: typing.Union[str, float], bpm: float = cliptune.constants.DEFAULT_BPM) -> float:

	"""
	Duration in seconds of one pass through the pattern.

	The slot length is multiplied by the number of top-level elements, so
	``"x[xx]"`` at ``"4n"`` lasts two quarter notes.
	"""

	return step_seconds(subdiv_or_seconds, bpm) * len(compile_pattern(pattern))


def least_common_multiple (first: int, second: int) -> int:

	"""Least common multiple of two positive integers, by stepping through multiples of the larger one."""

	if first <= 0 or second <= 0:
		raise ValueError(f"least_common_multiple needs positive integers, got {first} and {second}")

	smallest, largest = sorted((first, second))
	candidate = largest

	while candidate % smallest != 0:
		candidate += largest

	return candidate


def count_note_steps (pattern: str, has_random_pool: bool = False) -> int:

	"""Count triggers that pull from the primary note pool."""

	regular = pattern.count("x")

	if has_random_pool:
		return regular

	return regular + pattern.count("R")


def rendering_duration (
	pattern: str,
	subdiv_or_seconds: typing.Union[str, float],
	notes: typing.Sequence[typing.Any],
	random_notes: typing.Optional[typing.Sequence[typing.Any]] = None,
	bpm: float = cliptune.constants.DEFAULT_BPM
) -> float:

	"""
	Minimum seconds to render so every pattern position meets every note once.

	``R`` steps only count towards the cycle when they draw from the primary
	pool, i.e. when no random pool is supplied.

	Example:
		```python
		# 3 note steps against 2 notes: 6 triggers, i.e. 2 passes of 4 slots
		rendering_duration("x-xx", 0.5, ["C4", "D4"])   # 4.0
		```
	"""

	pattern_note_steps = count_note_steps(pattern, has_random_pool=bool(random_notes))

	if pattern_note_steps == 0:
		raise cliptune.errors.ValidationError(f"Pattern {pattern!r} has no note steps to render")

	note_count = len(notes) or 1

	return (
		total_pattern_duration(pattern, subdiv_or_seconds, bpm) / pattern_note_steps
		* least_common_multiple(note_count, pattern_note_steps)
	)
