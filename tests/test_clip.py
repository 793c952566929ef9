import random
import typing

import mido
import pytest

import cliptune.acquisition
import cliptune.clip
import cliptune.dispatcher
import cliptune.engine
import cliptune.errors
import cliptune.params
import cliptune.time_notation


class FakeProducer:

	def __init__ (self) -> None:

		self.calls: typing.List[typing.Tuple[typing.Any, ...]] = []


	def trigger_attack_release (self, note: typing.Any, duration: typing.Any, time: float, velocity: int = 100) -> None:

		self.calls.append((note, time))


class FakeHost:

	def __init__ (self) -> None:

		self.producer = FakeProducer()
		self.kind = cliptune.acquisition.ProducerKind.GENERIC
		self.external = None
		self.has_loaded = True
		self.context = None


def _looping_clip (transport: cliptune.engine.Transport, events: list, **options: typing.Any) -> cliptune.clip.Clip:

	params = cliptune.params.preprocess_clip_params(options)

	return cliptune.clip.Clip(params, FakeHost(), transport, on_note=events.append)


# ---------------------------------------------------------------------------
# Clip scheduling
# ---------------------------------------------------------------------------

def test_clip_loops_pattern () -> None:

	"""A started clip plays its pattern every cycle."""

	transport = cliptune.engine.Transport()
	events: typing.List[cliptune.dispatcher.Event] = []
	looped = _looping_clip(transport, events, pattern="x-", notes="C4 D4")

	looped.start()
	transport.advance_to(transport.to_ticks("2m") - 1)

	assert looped.cycle_ticks == 384
	assert [(e.note[0], transport.to_ticks(e.time)) for e in events] == [
		("C4", pytest.approx(0)),
		("D4", pytest.approx(384)),
		("C4", pytest.approx(768)),
		("D4", pytest.approx(1152)),
	]


def test_clip_durations_follow_pattern () -> None:

	"""Without dur, each step lasts its sustained share of the pattern."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x_x", subdiv="8n")

	looped.start()
	transport.advance_to(287)

	assert [e.duration for e in events] == [pytest.approx(0.5), pytest.approx(0.25)]


def test_clip_stop_cancels_later_steps () -> None:

	"""Steps at or after the stop position never play."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x-")

	looped.start(cliptune.time_notation.Ticks(0))
	looped.stop("1m")
	transport.advance_to(3000)

	assert len(events) == 2
	assert looped.state == "stopped"


def test_clip_restart_after_scheduled_stop () -> None:

	"""A stop and a later restart scheduled ahead of time both take effect."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x-")

	looped.start(cliptune.time_notation.Ticks(0))
	looped.stop(cliptune.time_notation.Ticks(768))
	looped.start(cliptune.time_notation.Ticks(1536))
	transport.advance_to(2303)

	assert [round(transport.to_ticks(e.time)) for e in events] == [0, 384, 1536, 1920]
	assert [e.counter for e in events] == [0, 1, 0, 1]


def test_clip_start_is_idempotent () -> None:

	"""Starting a playing clip again does not double its steps."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x")

	looped.start()
	looped.start()
	transport.advance_to(100)

	assert len(events) == 1


def test_clip_restart_cuts_overlapping_run () -> None:

	"""Restarting before a later scheduled stop ends the old run at the restart."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x-")

	looped.start(cliptune.time_notation.Ticks(0))
	looped.stop(cliptune.time_notation.Ticks(1536))
	looped.start(cliptune.time_notation.Ticks(768))
	transport.advance_to(1919)

	assert [round(transport.to_ticks(e.time)) for e in events] == [0, 384, 768, 1152, 1536]
	assert [e.counter for e in events] == [0, 1, 0, 1, 2]


def test_clip_stop_can_be_brought_forward () -> None:

	"""A second, earlier stop wins over the one already scheduled."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x-")

	looped.start(cliptune.time_notation.Ticks(0))
	looped.stop(cliptune.time_notation.Ticks(1536))
	looped.stop(cliptune.time_notation.Ticks(768))
	looped.stop(cliptune.time_notation.Ticks(3072))
	transport.advance_to(3072)

	assert [round(transport.to_ticks(e.time)) for e in events] == [0, 384]


def test_clip_reset_after_cancel () -> None:

	"""After the transport drops its callbacks, a reset clip starts again."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x")

	looped.start()
	transport.advance_to(200)
	transport.cancel()
	looped.reset()

	assert looped.state == "stopped"
	assert looped.step_counter == 0

	looped.start(cliptune.time_notation.Ticks(768))
	transport.advance_to(800)

	assert [e.counter for e in events] == [0, 1, 0]


def test_clip_note_lengths_follow_tempo () -> None:

	"""Pattern-derived note lengths are measured at the tempo in force when each step plays."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x", subdiv="4n")

	looped.start()
	transport.advance_to(0)
	transport.set_bpm(60)
	transport.advance_to(192)

	assert [e.duration for e in events] == [pytest.approx(0.5), pytest.approx(1.0)]
	assert looped.params.durations is None


def test_clip_nested_groups_timing () -> None:

	"""Grouped steps split their slot."""

	transport = cliptune.engine.Transport()
	events: list = []
	looped = _looping_clip(transport, events, pattern="x[xx]")

	looped.start()
	transport.advance_to(383)

	assert [round(transport.to_ticks(e.time)) for e in events] == [0, 192, 288]


def test_clip_without_channel_or_sample () -> None:

	"""A standalone clip needs a sample."""

	with pytest.raises(cliptune.errors.ConfigurationError, match="Either a channel or a sample must be provided"):
		cliptune.clip.clip({"pattern": "x"})


# ---------------------------------------------------------------------------
# Offline rendering
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_render_counts_note_and_random_steps () -> None:

	"""x and R steps each produce an event; rests and sustains do not."""

	rendered = await cliptune.clip.render_clip(
		{"pattern": "x-xRx_RR", "subdiv": "8n", "notes": "C4", "random_notes": "D4 E4"},
		rng = random.Random(4)
	)

	assert len(rendered.events) == 6
	assert rendered.duration == pytest.approx(2.0)
	assert all(event.note in (["D4"], ["E4"]) for event in rendered.events if event.note != ["C4"])


@pytest.mark.asyncio
async def test_render_cycles_notes () -> None:

	"""Notes are taken in order and wrap around."""

	rendered = await cliptune.clip.render_clip({"pattern": "xxxx", "notes": "C4 D4", "subdiv": "8n"})

	assert [event.note[0] for event in rendered.events] == ["C4", "D4", "C4", "D4"]


@pytest.mark.asyncio
async def test_render_runs_until_pattern_and_notes_align () -> None:

	"""Three note steps against two notes need two passes of the pattern."""

	rendered = await cliptune.clip.render_clip({"pattern": "x-xx", "notes": "C4 D4", "subdiv": "8n"})

	assert rendered.duration == pytest.approx(2.0)
	assert [event.note[0] for event in rendered.events] == ["C4", "D4", "C4", "D4", "C4", "D4"]


@pytest.mark.asyncio
async def test_render_duration_override () -> None:

	"""An explicit duration replaces the aligned rendering duration."""

	rendered = await cliptune.clip.render_clip({"pattern": "x-xx", "notes": "C4 D4", "subdiv": "8n"}, duration="2n")

	assert rendered.duration == pytest.approx(1.0)
	assert len(rendered.events) == 3


@pytest.mark.asyncio
async def test_render_records_midi () -> None:

	"""The destination records one note_on and one note_off per step."""

	rendered = await cliptune.clip.render_clip({"pattern": "x-x_", "notes": "C4 E4", "subdiv": "8n"}, bpm=90)
	types = [message.type for _, message in rendered.recorded]

	assert types.count("note_on") == 2
	assert types.count("note_off") == 2
	assert rendered.to_bytes()[:4] == b"MThd"
	assert rendered.bpm == 90


@pytest.mark.asyncio
async def test_render_plays_chords () -> None:

	"""Chord names play every chord tone through the default PolySynth."""

	rendered = await cliptune.clip.render_clip({"pattern": "x", "notes": "CM_4"})
	notes = sorted(message.note for _, message in rendered.recorded if message.type == "note_on")

	assert notes == [60, 64, 67]


@pytest.mark.asyncio
async def test_render_save (tmp_path: typing.Any) -> None:

	"""save() writes the recording as a MIDI file."""

	rendered = await cliptune.clip.render_clip({"pattern": "xx", "notes": "C4"})
	path = str(tmp_path / "clip.mid")
	rendered.save(path)

	assert len([m for m in mido.MidiFile(path).tracks[0] if m.type == "note_on"]) == 2


@pytest.mark.asyncio
async def test_render_invalid_pattern () -> None:

	"""Bad patterns raise before anything is rendered."""

	with pytest.raises(cliptune.errors.InvalidPatternError):
		await cliptune.clip.render_clip({"pattern": "x y"})


def test_unrendered_clip_has_nothing_to_export () -> None:

	"""to_bytes() and save() need a finished render."""

	rendered = cliptune.clip.RenderedClip(duration=0.0, bpm=120)

	assert rendered.recorded == []

	with pytest.raises(cliptune.errors.CliptuneError):
		rendered.to_bytes()


# ---------------------------------------------------------------------------
# to_notes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_to_notes_sustain_doubles_length () -> None:

	"""x_ at 8n is one quarter note long."""

	rendered = await cliptune.clip.render_clip({"pattern": "x_", "notes": "C4", "subdiv": "8n"})
	notes = rendered.to_notes()

	assert len(notes) == 1
	assert notes[0].length == pytest.approx(1.0)
	assert notes[0].note == ["C4"]


@pytest.mark.asyncio
async def test_to_notes_fills_rests () -> None:

	"""Gaps become rests, including a trailing rest up to the clip duration."""

	rendered = await cliptune.clip.render_clip({"pattern": "x-x-", "notes": "C4", "subdiv": "4n"})
	notes = rendered.to_notes()

	assert [(n.note, n.length) for n in notes] == [
		(["C4"], pytest.approx(1.0)),
		(None, pytest.approx(1.0)),
		(["C4"], pytest.approx(1.0)),
		(None, pytest.approx(1.0)),
	]


def test_to_notes_cuts_overlaps () -> None:

	"""A note longer than the gap to the next one is shortened."""

	rendered = cliptune.clip.RenderedClip(duration=1.0, bpm=120, events=[
		cliptune.dispatcher.Event(note=["C4"], duration="2n", time=0.0, counter=0, velocity=100),
		cliptune.dispatcher.Event(note=["D4"], duration="8n", time=0.5, counter=1, velocity=90),
	])

	notes = rendered.to_notes()

	assert [(n.note, n.length, n.level) for n in notes] == [
		(["C4"], pytest.approx(1.0), 100),
		(["D4"], pytest.approx(0.5), 90),
		(None, pytest.approx(0.5), 100),
	]


# ---------------------------------------------------------------------------
# Background rendering through clip()
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_offline_rendering_calls_back () -> None:

	"""clip() returns at once and calls the callback with the finished render."""

	finished: typing.List[cliptune.clip.RenderedClip] = []

	rendered = cliptune.clip.clip({
		"pattern": "xx",
		"notes": "C4 D4",
		"offline_rendering": True,
		"offline_rendering_callback": finished.append,
	})

	assert isinstance(rendered, cliptune.clip.RenderedClip)
	assert not rendered.done

	await rendered.wait()

	assert rendered.done
	assert finished == [rendered]
	assert len(rendered.events) == 2
