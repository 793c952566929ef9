"""Clips: a compiled pattern looping on the transport, plus standalone and offline entry points."""

import asyncio
import dataclasses
import io
import logging
import random
import typing

import cliptune.acquisition
import cliptune.constants
import cliptune.dispatcher
import cliptune.engine
import cliptune.errors
import cliptune.instruments
import cliptune.midi
import cliptune.params
import cliptune.pattern
import cliptune.time_notation


logger = logging.getLogger(__name__)

# Gaps shorter than this (in seconds) are float noise, not rests.
_EPSILON = 1e-6


class Clip:

	"""
	A pattern that loops on the transport, one pass every ``cycle_ticks``.

	Each pass is scheduled when the previous one ends, so a clip can run
	forever without filling the transport queue. ``start`` and ``stop`` take
	effect on the clip's state immediately and on the sound at ``position``.
	"""

	def __init__ (
		self,
		params: cliptune.params.ClipParams,
		host: typing.Any,
		transport: cliptune.engine.Transport,
		on_note: typing.Optional[typing.Callable[[cliptune.dispatcher.Event], typing.Any]] = None,
		on_error: typing.Optional[typing.Callable[[cliptune.errors.TriggerError], typing.Any]] = None,
		rng: typing.Optional[random.Random] = None
	) -> None:

		self.params = params
		self.transport = transport
		self.tree = cliptune.pattern.compile_pattern(params.pattern)

		self.slot_ticks = transport.to_ticks(params.subdiv)
		self.slices = cliptune.pattern.flatten(self.tree, self.slot_ticks)
		self.cycle_ticks = self.slot_ticks * len(self.tree)

		# Without explicit durations each note lasts its (sustained) share of the pattern.
		self.step_ticks = [
			cliptune.time_notation.Ticks(step.duration)
			for step in cliptune.pattern.assign_durations(self.tree, self.slot_ticks)
		]

		self.dispatcher = cliptune.dispatcher.StepDispatcher(
			params,
			host,
			on_note = on_note,
			on_error = on_error,
			rng = rng,
			step_durations = self.step_ticks,
			transport = transport
		)

		self.state = "stopped"

		self._scheduled: typing.List[typing.Tuple[float, int]] = []
		self._run: typing.Optional[_Run] = None


	@property
	def step_counter (self) -> int:

		return self.dispatcher.step_counter


	def start (self, position: cliptune.time_notation.TimeValue = cliptune.time_notation.Ticks(0)) -> None:

		"""
		Start looping at ``position``; the step counter is reset at the same position.

		A previous run that was due to keep playing past ``position`` is cut
		off there, so runs never overlap.
		"""

		if self.state == "started":
			return

		start_tick = self.transport.to_ticks(position)

		if self._run is not None and (self._run.stop_tick is None or self._run.stop_tick > start_tick):
			self._cut(start_tick)

		self.state = "started"
		self._run = _Run(start_tick=start_tick)

		self._schedule(lambda _time: self.dispatcher.reset(), start_tick)

		if self.cycle_ticks <= 0:
			logger.warning(f"Pattern {self.params.pattern!r} has no length; nothing to schedule")
			return

		self._schedule_cycle(start_tick, self._run)

		logger.debug(f"Clip {self.params.pattern!r} starting at tick {start_tick}")


	def stop (self, position: cliptune.time_notation.TimeValue = cliptune.time_notation.Ticks(0)) -> None:

		"""
		Stop at ``position``: steps scheduled before it still play, later ones are cancelled.

		Stopping a clip that is already due to stop only ever brings the stop forward.
		"""

		stop_tick = self.transport.to_ticks(position)

		if self.state == "stopped" and (self._run is None or (self._run.stop_tick is not None and self._run.stop_tick <= stop_tick)):
			return

		self.state = "stopped"
		self._cut(stop_tick)

		logger.debug(f"Clip {self.params.pattern!r} stopping at tick {stop_tick}")


	def reset (self) -> None:

		"""
		Forget every run and go back to stopped, for when the transport has dropped the clip's callbacks.
		"""

		self.state = "stopped"
		self._run = None
		self._scheduled = []
		self.dispatcher.reset()


	def _cut (self, stop_tick: float) -> None:

		if self._run is not None:
			self._run.stop_tick = stop_tick

		for tick, event_id in self._scheduled:
			if tick >= stop_tick:
				self.transport.clear(event_id)

		self._scheduled = [(tick, event_id) for tick, event_id in self._scheduled if tick < stop_tick]



	def _schedule (self, callback: cliptune.engine.TransportCallback, tick: float) -> None:

		event_id = self.transport.schedule_once(callback, cliptune.time_notation.Ticks(tick))
		self._scheduled.append((tick, event_id))


	def _schedule_cycle (self, cycle_start: float, run: "_Run") -> None:

		"""
		Schedule one pass of the pattern and the scheduling of the next.

		Each start opens a new run, so a run that was stopped in the future
		keeps playing until its own stop tick even if the clip is restarted
		later on.
		"""

		now = self.transport.ticks
		self._scheduled = [(tick, event_id) for tick, event_id in self._scheduled if tick >= now]

		stop_tick = run.stop_tick

		if stop_tick is not None and cycle_start >= stop_tick:
			return

		for item in self.slices:

			tick = cycle_start + item.time

			if stop_tick is not None and tick >= stop_tick:
				break

			self._schedule(lambda time, symbol=item.symbol: self.dispatcher(time, symbol), tick)

		next_start = cycle_start + self.cycle_ticks

		if stop_tick is None or next_start < stop_tick:
			self._schedule(lambda _time: self._schedule_cycle(next_start, run), next_start)


@dataclasses.dataclass
class _Run:

	start_tick: float
	stop_tick: typing.Optional[float] = None


@dataclasses.dataclass
class _StandaloneHost:

	"""Host for clips that are not played by a channel."""

	producer: typing.Any
	kind: cliptune.acquisition.ProducerKind
	context: cliptune.engine.AudioContext
	external: typing.Any = None
	has_loaded: bool = False


@dataclasses.dataclass
class RenderedClip:

	"""
	The output of an offline render.

	``events`` are the dispatched note events; ``recorded`` holds the MIDI
	messages that reached the destination as ``(tick, message)`` pairs.
	"""

	duration: float
	bpm: float
	events: typing.List[cliptune.dispatcher.Event] = dataclasses.field(default_factory=list)
	context: typing.Optional[cliptune.engine.AudioContext] = None
	done: bool = False
	error: typing.Optional[BaseException] = None
	task: typing.Optional["asyncio.Task[None]"] = None


	@property
	def recorded (self) -> typing.List[typing.Tuple[float, typing.Any]]:

		if self.context is None:
			return []

		return list(self.context.destination.recorded_events)


	async def wait (self) -> "RenderedClip":

		"""Wait for a background render; re-raises its error."""

		if self.task is not None and not self.task.done():
			await asyncio.shield(self.task)

		if self.error is not None:
			raise self.error

		return self


	def to_notes (self) -> typing.List[cliptune.midi.NoteObject]:

		"""
		The events as sequential note objects, with rests filling the gaps up to ``duration``.

		Lengths are in quarter notes. A note that would overlap the next one is
		cut short where the next one starts.
		"""

		seconds_per_quarter = 60.0 / self.bpm
		notes: typing.List[cliptune.midi.NoteObject] = []
		cursor = 0.0

		for i, event in enumerate(self.events):

			if event.time - cursor > _EPSILON:
				notes.append(cliptune.midi.NoteObject(note=None, length=(event.time - cursor) / seconds_per_quarter))

			length = cliptune.time_notation.to_seconds(event.duration, self.bpm)

			if i + 1 < len(self.events):
				length = min(length, self.events[i + 1].time - event.time)

			notes.append(cliptune.midi.NoteObject(note=event.note, length=length / seconds_per_quarter, level=event.velocity))
			cursor = event.time + length

		if self.duration - cursor > _EPSILON:
			notes.append(cliptune.midi.NoteObject(note=None, length=(self.duration - cursor) / seconds_per_quarter))

		return notes


	def to_bytes (self) -> bytes:

		"""The recorded messages as a Standard MIDI File."""

		if self.context is None:
			raise cliptune.errors.CliptuneError("Nothing has been rendered yet")

		buffer = io.BytesIO()
		self.context.destination.to_midi_file().save(file=buffer)

		return buffer.getvalue()


	def save (self, filename: str) -> None:

		if self.context is None:
			raise cliptune.errors.CliptuneError("Nothing has been rendered yet")

		self.context.destination.save_recording(filename)


def _standalone_host (params: cliptune.params.ClipParams, context: cliptune.engine.AudioContext) -> _StandaloneHost:

	player = cliptune.instruments.Player(params.sample, context=context)
	player.to_destination()

	host = _StandaloneHost(producer=player, kind=cliptune.acquisition.ProducerKind.PLAYER, context=context)

	def loaded (error: typing.Optional[BaseException]) -> None:

		if error is not None:
			logger.error(f"Sample for clip {params.pattern!r} failed to load: {error}")
			return

		host.has_loaded = True

	player.on_load(loaded)

	return host


def clip (
	params: typing.Union[cliptune.params.ClipParams, typing.Dict[str, typing.Any], None],
	channel: typing.Any = None,
	context: typing.Optional[cliptune.engine.AudioContext] = None
) -> typing.Union[Clip, RenderedClip]:

	"""
	Build a clip.

	With ``offline_rendering`` set, the clip is rendered in the background
	and a ``RenderedClip`` is returned straight away; its
	``offline_rendering_callback`` is called with it once the render is done.
	Otherwise the clip is played by ``channel`` or, without one, by a sample
	player built from ``sample``. Needs a running event loop whenever a
	sample or a background render is involved.
	"""

	if channel is not None:
		params = cliptune.params.preprocess_clip_params(params, channel.clip_defaults, rng=channel.rng)
	else:
		params = cliptune.params.preprocess_clip_params(params)

	if params.offline_rendering:
		return _start_offline_render(params)

	if channel is not None:
		return channel.create_clip(params)

	if params.sample is not None:
		context = context if context is not None else cliptune.engine.default_context()
		return Clip(params, _standalone_host(params, context), context.transport)

	raise cliptune.errors.ConfigurationError("Either a channel or a sample must be provided to create a clip.")


def _start_offline_render (params: cliptune.params.ClipParams) -> RenderedClip:

	rendered = RenderedClip(duration=0.0, bpm=cliptune.constants.DEFAULT_BPM)
	callback = params.offline_rendering_callback

	def finished (task: "asyncio.Task[None]") -> None:

		if task.cancelled():
			return

		error = task.exception()

		if error is not None:
			rendered.error = error
			logger.error(f"Offline render of {params.pattern!r} failed: {error}")
			return

		if callback is not None:
			callback(rendered)

	rendered.task = asyncio.get_running_loop().create_task(_render(params, rendered))
	rendered.task.add_done_callback(finished)

	return rendered


async def render_clip (
	params: typing.Union[cliptune.params.ClipParams, typing.Dict[str, typing.Any], None],
	bpm: float = cliptune.constants.DEFAULT_BPM,
	instrument: typing.Any = None,
	rng: typing.Optional[random.Random] = None,
	duration: typing.Optional[cliptune.time_notation.TimeValue] = None
) -> RenderedClip:

	"""
	Render a clip offline for exactly its rendering duration, or for ``duration`` when given.

	The clip plays on a fresh render-mode context, through a ``PolySynth``
	unless ``instrument`` (a producer or registry name) or the clip's
	``sample`` says otherwise.

	Example:
		```python
		rendered = await render_clip({"pattern": "x-x_", "notes": "C4 E4"})
		rendered.to_bytes()   # a Standard MIDI File
		```
	"""

	params = cliptune.params.preprocess_clip_params(params, rng=rng)
	rendered = RenderedClip(duration=0.0, bpm=bpm)

	await _render(params, rendered, bpm, instrument, rng, duration)

	return rendered


async def _render (
	params: cliptune.params.ClipParams,
	rendered: RenderedClip,
	bpm: float = cliptune.constants.DEFAULT_BPM,
	instrument: typing.Any = None,
	rng: typing.Optional[random.Random] = None,
	length: typing.Optional[cliptune.time_notation.TimeValue] = None
) -> None:

	context = cliptune.engine.AudioContext.offline(bpm)

	if length is not None:
		duration = context.transport.to_seconds(length)
	else:
		duration = cliptune.pattern.rendering_duration(params.pattern, params.subdiv, params.notes, params.random_notes, bpm)

	rendered.context = context
	rendered.duration = duration
	rendered.bpm = bpm

	if params.sample is not None:
		source = cliptune.acquisition.resolve_source(sample=params.sample)
	else:
		source = cliptune.acquisition.resolve_source(instrument=instrument if instrument is not None else "PolySynth")

	acquisition = cliptune.acquisition.acquire(source, context, label="offline render")
	producer = await acquisition.ready

	host = _StandaloneHost(producer=producer, kind=acquisition.kind, context=context, has_loaded=True)
	looped = Clip(params, host, context.transport, on_note=rendered.events.append, rng=rng)

	logger.info(f"Rendering {params.pattern!r} offline for {duration:.3f}s")

	looped.start(cliptune.time_notation.Ticks(0))
	await context.transport.run(until=duration)

	looped.stop(duration)
	context.transport.stop()

	rendered.done = True
