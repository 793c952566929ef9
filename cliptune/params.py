"""Clip options and their normalisation."""

import dataclasses
import logging
import random
import re
import typing

import cliptune.constants
import cliptune.constants.velocity
import cliptune.errors
import cliptune.pattern
import cliptune.sequence_utils
import cliptune.theory
import cliptune.time_notation


logger = logging.getLogger(__name__)

NotePool = typing.List[typing.List[typing.Any]]

_ACCENT = re.compile(r"^[x\-]+$")


@dataclasses.dataclass
class ClipParams:

	"""
	Everything a clip needs to turn a pattern into notes.

	After ``preprocess_clip_params``, ``notes`` and ``random_notes`` are pools
	of note lists: one list per entry, so single notes are ``["C4"]`` and
	chords are ``["C4", "E4", "G4"]``.
	"""

	pattern: str = "x"
	notes: typing.Any = dataclasses.field(default_factory=lambda: ["C4"])
	random_notes: typing.Any = None
	shuffle: bool = False
	subdiv: cliptune.time_notation.TimeValue = cliptune.constants.DEFAULT_SUBDIV
	dur: typing.Optional[cliptune.time_notation.TimeValue] = None
	durations: typing.Optional[typing.List[cliptune.time_notation.TimeValue]] = None
	align: cliptune.time_notation.TimeValue = cliptune.constants.DEFAULT_ALIGN
	align_offset: cliptune.time_notation.TimeValue = cliptune.constants.DEFAULT_ALIGN_OFFSET
	amp: int = cliptune.constants.velocity.DEFAULT_AMP
	accent: typing.Optional[str] = None
	accent_low: int = cliptune.constants.velocity.DEFAULT_ACCENT_LOW
	sizzle: typing.Union[bool, str] = False
	sizzle_reps: int = 1
	sample: typing.Any = None
	offline_rendering: bool = False
	offline_rendering_callback: typing.Optional[typing.Callable[..., typing.Any]] = None


CLIP_OPTION_NAMES = frozenset(field.name for field in dataclasses.fields(ClipParams))


def split_notes (notes: typing.Any) -> typing.List[typing.Any]:

	"""Split a whitespace-separated note string; lists pass through."""

	if isinstance(notes, str):
		return notes.split()

	return list(notes)


def resolve_pool (notes: typing.Any) -> NotePool:

	"""Turn notes, chord names or note lists into a pool of note lists."""

	return [cliptune.theory.convert_chords_to_notes(element) for element in split_notes(notes)]


def _explicit_fields (params: ClipParams) -> typing.Dict[str, typing.Any]:

	"""Fields of a ``ClipParams`` that differ from the dataclass defaults."""

	blank = ClipParams()
	given: typing.Dict[str, typing.Any] = {}

	for field in dataclasses.fields(params):

		value = getattr(params, field.name)

		if value != getattr(blank, field.name):
			given[field.name] = value

	return given


def preprocess_clip_params (
	params: typing.Union[ClipParams, typing.Dict[str, typing.Any], None] = None,
	defaults: typing.Optional[typing.Dict[str, typing.Any]] = None,
	rng: typing.Optional[random.Random] = None
) -> ClipParams:

	"""
	Merge defaults into clip options, resolve note pools and validate.

	``defaults`` are applied underneath ``params``; for a ``ClipParams``
	instance only the fields changed from their defaults count as given. Raises
	``ConfigurationError`` for unknown option names,
	``InvalidPatternError`` for bad patterns and ``ResolutionError`` for
	notes that cannot be resolved.
	"""

	if isinstance(params, ClipParams):
		given = _explicit_fields(params)
	else:
		given = dict(params or {})

	merged = {**(defaults or {}), **{key: value for key, value in given.items() if value is not None}}
	unknown = sorted(set(merged) - CLIP_OPTION_NAMES)

	if unknown:
		raise cliptune.errors.ConfigurationError(f"Unknown clip option(s): {', '.join(unknown)}")

	result = ClipParams(**merged)

	cliptune.pattern.compile_pattern(result.pattern)

	result.notes = resolve_pool(result.notes) if result.notes is not None else []

	if result.shuffle and len(result.notes) > 1:
		result.notes = cliptune.sequence_utils.shuffle(result.notes, rng=rng)

	if result.random_notes:
		result.random_notes = resolve_pool(result.random_notes)
	else:
		result.random_notes = None

	if result.accent is not None and not _ACCENT.match(result.accent):
		raise cliptune.errors.ConfigurationError(f"accent can only comprise x and -, found {result.accent}")

	if result.sizzle and result.sizzle is not True and result.sizzle not in cliptune.sequence_utils.SIZZLE_STYLES:
		raise cliptune.errors.ConfigurationError(
			f"Unknown sizzle style {result.sizzle!r}. Expected one of {cliptune.sequence_utils.SIZZLE_STYLES}"
		)

	if result.durations is not None and not result.durations:
		raise cliptune.errors.ConfigurationError("durations cannot be empty")

	return result
