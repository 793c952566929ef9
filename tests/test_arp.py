import pytest

import cliptune.arp
import cliptune.errors


def test_arp_default_ascending () -> None:

	"""Each chord is extended to four notes and played upwards."""

	assert cliptune.arp.arp("CM_4 FM_4") == ["C4", "E4", "G4", "C5", "F4", "A4", "C5", "F5"]


def test_arp_extends_by_octaves () -> None:

	"""Eight notes from a triad reach two octaves up."""

	notes = cliptune.arp.arp("CM_4", count=8)

	assert notes == ["C4", "E4", "G4", "C5", "E5", "G5", "C6", "E6"]


def test_arp_order_indexes_extended_notes () -> None:

	"""Order digits are zero-based indexes into the extended chord."""

	assert cliptune.arp.arp("CM_4", count=8, order="76543210")[0] == "E6"
	assert cliptune.arp.arp("CM_3", count=4, order="1032") == ["E3", "C3", "C4", "G3"]


def test_arp_order_can_repeat_digits () -> None:

	"""An order may be longer than the count and repeat notes."""

	assert cliptune.arp.arp("CM_4", count=2, order="0101") == ["C4", "E4", "C4", "E4"]


def test_arp_from_note_lists () -> None:

	"""Explicit note lists work the same as chord names."""

	assert cliptune.arp.arp([["C4", "E4", "G4"]], count=3) == ["C4", "E4", "G4"]


@pytest.mark.parametrize("count", [1, 9, "4", True])
def test_arp_invalid_count (count: object) -> None:

	"""Counts outside 2-8 (or not integers) raise."""

	with pytest.raises(cliptune.errors.ValidationError, match="Invalid value for count"):
		cliptune.arp.arp("CM_4", count=count)


@pytest.mark.parametrize("order", ["4", "a1", ""])
def test_arp_invalid_order (order: str) -> None:

	"""Digits must index into the extended chord."""

	with pytest.raises(cliptune.errors.ValidationError, match="Invalid value for order"):
		cliptune.arp.arp("CM_4", count=4, order=order)


def test_arp_invalid_chords () -> None:

	"""Chords must be a string or a list of note lists."""

	with pytest.raises(cliptune.errors.ValidationError, match="Invalid value for chords"):
		cliptune.arp.arp(42)

	with pytest.raises(cliptune.errors.ResolutionError):
		cliptune.arp.arp("Qm_4")
