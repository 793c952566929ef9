import pytest

import cliptune.errors
import cliptune.time_notation


@pytest.mark.parametrize("value, ticks", [
	("4n", 192.0),
	("8n", 96.0),
	("16n", 48.0),
	("1m", 768.0),
	("0.75m", 576.0),
	("4n.", 288.0),
	("8t", 64.0),
	("4:0:0", 3072.0),
	("1:2", 1152.0),
	("0:0:2", 96.0),
	("96i", 96.0),
])
def test_notation_to_ticks (value: str, ticks: float) -> None:

	"""Note values, measures, bars:beats:sixteenths and raw ticks convert to ticks."""

	assert cliptune.time_notation.to_ticks(value, 120) == pytest.approx(ticks)


def test_notation_is_independent_of_tempo () -> None:

	"""Musical notation maps to the same ticks at any tempo."""

	assert cliptune.time_notation.to_ticks("1m", 60) == cliptune.time_notation.to_ticks("1m", 180)


def test_numbers_are_seconds () -> None:

	"""Plain numbers and numeric strings are seconds, converted at the given tempo."""

	assert cliptune.time_notation.to_ticks(0.5, 120) == pytest.approx(192.0)
	assert cliptune.time_notation.to_ticks("1.5", 120) == pytest.approx(576.0)
	assert cliptune.time_notation.to_ticks(1, 60) == pytest.approx(192.0)


def test_ticks_pass_through () -> None:

	"""A Ticks value is already on the grid."""

	value = cliptune.time_notation.Ticks(96)

	assert cliptune.time_notation.to_ticks(value, 120) == 96.0
	assert cliptune.time_notation.to_seconds(value, 120) == pytest.approx(0.25)
	assert repr(value) == "Ticks(96.0)"


def test_to_seconds () -> None:

	"""Notation converts to seconds; seconds stay as they are."""

	assert cliptune.time_notation.to_seconds("4n", 120) == pytest.approx(0.5)
	assert cliptune.time_notation.to_seconds("1m", 60) == pytest.approx(4.0)
	assert cliptune.time_notation.to_seconds(2.5, 90) == 2.5


def test_seconds_and_ticks_round_trip_at_fixed_tempo () -> None:

	"""seconds_to_ticks and ticks_to_seconds are inverses."""

	ticks = cliptune.time_notation.seconds_to_ticks(1.25, 97)

	assert cliptune.time_notation.ticks_to_seconds(ticks, 97) == pytest.approx(1.25)


@pytest.mark.parametrize("value", ["abc", "0n", "", "4x", True, None])
def test_invalid_time_values_raise (value: object) -> None:

	"""Unparseable values raise ValidationError."""

	with pytest.raises(cliptune.errors.ValidationError):
		cliptune.time_notation.to_ticks(value, 120)
