import pytest

import cliptune.errors
import cliptune.pattern


# ---------------------------------------------------------------------------
# compile_pattern
# ---------------------------------------------------------------------------

def test_compile_flat_pattern () -> None:

	"""A pattern without groups compiles to a flat list of characters."""

	assert cliptune.pattern.compile_pattern("x-x_") == ["x", "-", "x", "_"]


def test_compile_nested_groups () -> None:

	"""Brackets become nested lists."""

	assert cliptune.pattern.compile_pattern("xxx[xx[xx]]") == ["x", "x", "x", ["x", "x", ["x", "x"]]]


def test_expand_str_nesting () -> None:

	"""expand_str is the same compiler; deep elements are reachable by index."""

	tree = cliptune.pattern.expand_str("x[-x[-x]]")

	assert tree[1][2][1] == "x"
	assert tree[1][0] == "-"


def test_compile_rejects_invalid_characters () -> None:

	"""Characters outside the alphabet raise with the offending pattern in the message."""

	with pytest.raises(cliptune.errors.InvalidPatternError, match="pattern can only comprise x - _ \\[ \\] R, found x-y"):
		cliptune.pattern.compile_pattern("x-y")


def test_invalid_pattern_is_a_validation_error () -> None:

	"""Pattern errors belong to the validation family (and are ValueErrors)."""

	with pytest.raises(ValueError):
		cliptune.pattern.compile_pattern("x x")

	with pytest.raises(cliptune.errors.ValidationError):
		cliptune.pattern.compile_pattern("a")


@pytest.mark.parametrize("pattern", ["x[x", "x]x", "[[x]"])
def test_compile_rejects_unbalanced_brackets (pattern: str) -> None:

	"""Unbalanced brackets are rejected."""

	with pytest.raises(cliptune.errors.InvalidPatternError):
		cliptune.pattern.compile_pattern(pattern)


def test_validate_pattern_only_checks_characters () -> None:

	"""validate_pattern accepts unbalanced brackets; it only checks the alphabet."""

	cliptune.pattern.validate_pattern("x[x")

	with pytest.raises(cliptune.errors.InvalidPatternError):
		cliptune.pattern.validate_pattern("x.x")


# ---------------------------------------------------------------------------
# flatten / assign_durations
# ---------------------------------------------------------------------------

def test_flatten_splits_groups_evenly () -> None:

	"""A group of K children divides its slot into K equal slots."""

	slices = cliptune.pattern.flatten(cliptune.pattern.compile_pattern("x[xx]"), 1.0)

	assert [(s.symbol, s.time, s.length) for s in slices] == [
		("x", 0.0, 1.0),
		("x", 1.0, 0.5),
		("x", 1.5, 0.5),
	]


def test_flatten_skips_empty_groups () -> None:

	"""An empty group produces no slices but still takes its place in the parent."""

	slices = cliptune.pattern.flatten(cliptune.pattern.compile_pattern("x[]x"), 1.0)

	assert [(s.symbol, s.time) for s in slices] == [("x", 0.0), ("x", 2.0)]


def test_flatten_does_not_share_state_between_calls () -> None:

	"""Repeated calls on the same tree give equal, independent results."""

	tree = cliptune.pattern.compile_pattern("x[x-]")
	first = cliptune.pattern.flatten(tree, 1.0)
	second = cliptune.pattern.flatten(tree, 1.0)

	assert first == second
	assert first is not second
	assert len(second) == 3


def test_sustain_extends_previous_step () -> None:

	"""x_ is a single step of twice the slot length."""

	steps = cliptune.pattern.assign_durations(cliptune.pattern.compile_pattern("x_"), 0.5)

	assert len(steps) == 1
	assert steps[0].duration == pytest.approx(1.0)


def test_sustain_extends_across_groups () -> None:

	"""A sustain inside a group extends the step before the group."""

	steps = cliptune.pattern.assign_durations(cliptune.pattern.compile_pattern("x[_x]"), 1.0)

	assert [(s.kind, s.time, s.duration) for s in steps] == [("x", 0.0, 1.5), ("x", 1.5, 0.5)]


def test_leading_sustain_is_dropped () -> None:

	"""A sustain with nothing before it is silently ignored."""

	steps = cliptune.pattern.assign_durations(cliptune.pattern.compile_pattern("_x"), 1.0)

	assert [(s.kind, s.time, s.duration) for s in steps] == [("x", 1.0, 1.0)]


def test_rests_produce_no_steps () -> None:

	"""Rests are dropped; R steps are kept with their kind."""

	steps = cliptune.pattern.assign_durations(cliptune.pattern.compile_pattern("x-R-"), 1.0)

	assert [(s.kind, s.time) for s in steps] == [("x", 0.0), ("R", 2.0)]


@pytest.mark.parametrize("pattern", ["x", "xx_x", "x[xx]_", "x[x[xR]]x__", "R[x_]"])
def test_step_durations_sum_to_total_duration (pattern: str) -> None:

	"""Without rests or a leading sustain the steps fill the whole pattern."""

	unit = cliptune.pattern.step_seconds("8n", 120)
	steps = cliptune.pattern.assign_durations(cliptune.pattern.compile_pattern(pattern), unit)

	assert sum(s.duration for s in steps) == pytest.approx(cliptune.pattern.total_pattern_duration(pattern, "8n", 120))


# ---------------------------------------------------------------------------
# total_pattern_duration / least_common_multiple / rendering_duration
# ---------------------------------------------------------------------------

def test_total_pattern_duration_counts_top_level_elements () -> None:

	"""Groups count as one slot."""

	assert cliptune.pattern.total_pattern_duration("x[xx]", "4n") == pytest.approx(1.0)
	assert cliptune.pattern.total_pattern_duration("x[xx]", 0.25) == pytest.approx(0.5)


def test_total_pattern_duration_uses_bpm () -> None:

	"""Notation is converted at the given tempo."""

	assert cliptune.pattern.total_pattern_duration("xxxx", "4n", bpm=60) == pytest.approx(4.0)


def test_least_common_multiple () -> None:

	"""Known values, including equal operands."""

	assert cliptune.pattern.least_common_multiple(4, 6) == 12
	assert cliptune.pattern.least_common_multiple(5, 5) == 5
	assert cliptune.pattern.least_common_multiple(1, 7) == 7


def test_least_common_multiple_rejects_non_positive () -> None:

	"""Zero or negative operands raise."""

	with pytest.raises(ValueError):
		cliptune.pattern.least_common_multiple(0, 3)


def test_count_note_steps () -> None:

	"""R steps count only when they draw from the primary pool."""

	assert cliptune.pattern.count_note_steps("x-xRx_RR") == 6
	assert cliptune.pattern.count_note_steps("x-xRx_RR", has_random_pool=True) == 3


def test_rendering_duration_aligns_pattern_and_notes () -> None:

	"""Three note steps against two notes need two passes."""

	assert cliptune.pattern.rendering_duration("x-xx", 0.5, ["C4", "D4"]) == pytest.approx(4.0)


def test_rendering_duration_ignores_random_steps_with_random_pool () -> None:

	"""With a random pool, R steps do not stretch the cycle."""

	duration = cliptune.pattern.rendering_duration("xR", 0.5, ["C4", "D4"], random_notes=["E4"])

	assert duration == pytest.approx(2.0)


def test_rendering_duration_without_note_steps_raises () -> None:

	"""A pattern of rests cannot be rendered."""

	with pytest.raises(cliptune.errors.ValidationError):
		cliptune.pattern.rendering_duration("--", "4n", ["C4"])

	with pytest.raises(cliptune.errors.ValidationError):
		cliptune.pattern.rendering_duration("RR", "4n", ["C4"], random_notes=["D4"])


@pytest.mark.parametrize("factor", [1, 2, 3, 4])
def test_rendering_duration_is_scale_invariant (factor: int) -> None:

	"""Scaling note count and note steps by the same factor, at the same pattern length, changes nothing."""

	pattern = "x" * (2 * factor)
	notes = ["C4"] * (3 * factor)

	assert cliptune.pattern.rendering_duration(pattern, 0.5 / factor, notes) == pytest.approx(3.0)
