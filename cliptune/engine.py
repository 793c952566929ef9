"""Transport clock, MIDI destination and the audio context that ties them together.

The ``Transport`` keeps a heap of one-shot callbacks keyed by tick. In real
time, ``run()`` advances it from the wall clock; in render mode it jumps from
event to event so an offline render takes no longer than the work itself.
The ``MidiDestination`` is the end of every signal chain: it turns note
messages into ``note_on``/``note_off`` pairs on the transport, sends them to a
``mido`` output port and optionally records them for export.
"""

import asyncio
import dataclasses
import heapq
import itertools
import logging
import time
import typing

import mido

import cliptune.constants
import cliptune.event_emitter
import cliptune.midi_utils
import cliptune.time_notation


logger = logging.getLogger(__name__)

TransportCallback = typing.Callable[[float], typing.Any]


@dataclasses.dataclass (order=True)
class ScheduledEvent:

	"""
	A one-shot callback waiting on the transport heap.
	"""

	tick: float
	sequence: int
	event_id: int = dataclasses.field(compare=False)
	callback: TransportCallback = dataclasses.field(compare=False)


@dataclasses.dataclass
class NoteMessage:

	"""
	A note travelling from a producer through effects to the destination.

	``time`` and ``duration`` are in seconds; ``velocity`` is 0-127.
	"""

	note: int
	velocity: int
	duration: float
	time: float
	channel: int = 0


class Transport:

	"""
	The shared musical clock.

	Positions are ticks (``TICKS_PER_QUARTER`` per quarter note, 4/4). Every
	method that takes a position or length also accepts time notation and
	seconds (see ``cliptune.time_notation``).
	"""

	def __init__ (
		self,
		bpm: float = cliptune.constants.DEFAULT_BPM,
		ppq: int = cliptune.constants.TICKS_PER_QUARTER,
		render_mode: bool = False,
		max_sleep: float = 0.01
	) -> None:

		"""
		Parameters:
			bpm: Initial tempo.
			ppq: Ticks per quarter note.
			render_mode: When True, ``run()`` skips straight from one event to the
				next instead of following the wall clock.
			max_sleep: Longest real-time sleep between clock checks, in seconds.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		self.ppq = ppq
		self.render_mode = render_mode
		self.max_sleep = max_sleep
		self.state = "stopped"
		self.events = cliptune.event_emitter.EventEmitter()

		self._bpm = float(bpm)
		self._ticks = 0.0
		self._queue: typing.List[ScheduledEvent] = []
		self._sequence = itertools.count()
		self._ids = itertools.count(1)
		self._cleared: typing.Set[int] = set()
		self._anchor_wall = 0.0
		self._anchor_ticks = 0.0


	@property
	def bpm (self) -> float:

		return self._bpm


	@bpm.setter
	def bpm (self, value: float) -> None:

		self.set_bpm(value)


	def set_bpm (self, bpm: float) -> None:

		"""
		Change the tempo; scheduled tick positions stay where they are.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		# Re-anchor so that the ticks already played keep their wall-clock time.
		if self.state == "started" and not self.render_mode:
			self._anchor_ticks = self._wall_ticks()
			self._anchor_wall = time.perf_counter()

		self._bpm = float(bpm)

		logger.info(f"BPM set to {self._bpm:.2f}")


	@property
	def ticks (self) -> float:

		"""Current position in ticks."""

		return self._ticks


	@property
	def seconds (self) -> float:

		"""Current position in seconds at the current tempo."""

		return self.ticks_to_seconds(self._ticks)


	def to_ticks (self, value: cliptune.time_notation.TimeValue) -> float:

		return cliptune.time_notation.to_ticks(value, self._bpm, self.ppq)


	def to_seconds (self, value: cliptune.time_notation.TimeValue) -> float:

		return cliptune.time_notation.to_seconds(value, self._bpm, self.ppq)


	def ticks_to_seconds (self, ticks: float) -> float:

		return cliptune.time_notation.ticks_to_seconds(ticks, self._bpm, self.ppq)


	def schedule_once (self, callback: TransportCallback, position: cliptune.time_notation.TimeValue) -> int:

		"""
		Call ``callback(time_in_seconds)`` once when the transport reaches ``position``.

		Returns an id for ``clear()``. Callbacks at the same tick run in the
		order they were scheduled.
		"""

		tick = self.to_ticks(position)
		event_id = next(self._ids)

		heapq.heappush(self._queue, ScheduledEvent(tick, next(self._sequence), event_id, callback))

		return event_id


	def clear (self, event_id: int) -> None:

		"""
		Remove a single scheduled callback. Unknown or already-fired ids are ignored.
		"""

		if any(event.event_id == event_id for event in self._queue):
			self._cleared.add(event_id)


	def cancel (self, after: cliptune.time_notation.TimeValue = cliptune.time_notation.Ticks(0)) -> None:

		"""
		Drop every pending callback scheduled at or after ``after``.
		"""

		limit = self.to_ticks(after)
		kept = [event for event in self._queue if event.tick < limit and event.event_id not in self._cleared]
		dropped = len(self._queue) - len(kept)

		heapq.heapify(kept)
		self._queue = kept
		self._cleared.clear()

		logger.debug(f"Cancelled {dropped} scheduled events from tick {limit}")


	@property
	def pending (self) -> int:

		"""Number of callbacks still waiting to fire."""

		return sum(1 for event in self._queue if event.event_id not in self._cleared)


	def _next_tick (self) -> typing.Optional[float]:

		while self._queue and self._queue[0].event_id in self._cleared:
			self._cleared.discard(heapq.heappop(self._queue).event_id)

		return self._queue[0].tick if self._queue else None


	def start (self) -> None:

		"""
		Start the clock from the current position and emit ``"start"``.
		"""

		if self.state == "started":
			return

		self.state = "started"
		self._anchor_wall = time.perf_counter()
		self._anchor_ticks = self._ticks

		logger.info("Transport started")

		self.events.emit("start", self._ticks)


	def stop (self) -> None:

		"""
		Stop the clock, rewind to zero and emit ``"stop"``.

		Scheduled callbacks stay queued; call ``cancel()`` to drop them.
		"""

		if self.state == "stopped":
			return

		self.state = "stopped"

		logger.info("Transport stopped")

		self.events.emit("stop")
		self._ticks = 0.0


	def advance_to (self, tick: float, inclusive: bool = True) -> None:

		"""
		Fire every callback scheduled up to ``tick``, in order.

		Callbacks exactly at ``tick`` fire only when ``inclusive`` is True.

		While a callback runs, ``ticks`` reports that callback's own tick.
		Callbacks that schedule further events inside the window are fired in
		the same call.
		"""

		target = float(tick)

		while True:

			next_tick = self._next_tick()

			if next_tick is None or next_tick > target or (next_tick == target and not inclusive):
				break

			event = heapq.heappop(self._queue)
			self._ticks = max(self._ticks, event.tick)

			event.callback(self.ticks_to_seconds(event.tick))

		self._ticks = max(self._ticks, target)


	def render (self, duration: cliptune.time_notation.TimeValue) -> None:

		"""
		Advance synchronously by ``duration`` from the current position.
		"""

		self.advance_to(self._ticks + self.to_ticks(duration))


	def _wall_ticks (self) -> float:

		elapsed = time.perf_counter() - self._anchor_wall

		return self._anchor_ticks + cliptune.time_notation.seconds_to_ticks(elapsed, self._bpm, self.ppq)


	async def run (self, until: typing.Optional[cliptune.time_notation.TimeValue] = None) -> None:

		"""
		Drive the clock until it is stopped, or until ``until`` is reached.

		Callbacks scheduled exactly at ``until`` are left pending. In render
		mode the loop also ends when no callbacks remain.
		"""

		self.start()

		limit = self.to_ticks(until) if until is not None else None

		while self.state == "started":

			if self.render_mode:

				next_tick = self._next_tick()

				if next_tick is None or (limit is not None and next_tick >= limit):
					if limit is not None:
						self.advance_to(limit, inclusive=False)
					break

				self.advance_to(next_tick)

				# Let acquisition tasks and listeners run between events.
				await asyncio.sleep(0)
				continue

			target = self._wall_ticks()

			if limit is not None and target >= limit:
				self.advance_to(limit, inclusive=False)
				break

			self.advance_to(target)

			next_tick = self._next_tick()

			if next_tick is None:
				wait = self.max_sleep
			else:
				wait = min(self.max_sleep, self.ticks_to_seconds(next_tick - self._ticks))

			await asyncio.sleep(max(wait, 0.0))


class MidiDestination:

	"""
	The final node of every signal chain.

	Turns ``NoteMessage`` objects into note_on/note_off pairs on the
	transport, sends them to a MIDI output and (optionally) records them.
	"""

	def __init__ (
		self,
		transport: Transport,
		output_device_name: typing.Optional[str] = None,
		open_port: bool = True,
		record: bool = False
	) -> None:

		"""
		Parameters:
			transport: Clock used to schedule note_off messages.
			output_device_name: MIDI output to open; the first available one when omitted.
			open_port: When False no port is opened (offline rendering).
			record: When True every sent message is kept in ``recorded_events``.
		"""

		self.transport = transport
		self.output_device_name = output_device_name
		self.open_port = open_port
		self.recording = record
		self.recorded_events: typing.List[typing.Tuple[float, mido.Message]] = []
		self.active_notes: typing.Set[typing.Tuple[int, int]] = set()
		self.midi_out: typing.Optional[typing.Any] = None
		self._port_requested = False

		self.transport.events.on("stop", self._on_transport_stop)


	def open (self) -> None:

		"""
		Open the output port (once). Failures are logged and playback continues without a port.
		"""

		if self._port_requested or not self.open_port:
			return

		self._port_requested = True

		device_name, midi_out = cliptune.midi_utils.select_output_device(self.output_device_name)

		if device_name:
			self.output_device_name = device_name
			self.midi_out = midi_out


	def close (self) -> None:

		if self.midi_out is not None:
			self.midi_out.close()
			self.midi_out = None

		self._port_requested = False


	def receive (self, message: NoteMessage) -> None:

		"""
		Schedule a note: on at ``message.time``, off ``message.duration`` later.
		"""

		on_tick = cliptune.time_notation.seconds_to_ticks(message.time, self.transport.bpm, self.transport.ppq)
		off_tick = on_tick + cliptune.time_notation.seconds_to_ticks(message.duration, self.transport.bpm, self.transport.ppq)

		on = cliptune.midi_utils.note_message(message.note, message.velocity, message.channel, on=True)
		off = cliptune.midi_utils.note_message(message.note, 0, message.channel, on=False)

		if on_tick <= self.transport.ticks:
			self.send(on, self.transport.ticks)
		else:
			self.transport.schedule_once(lambda _time, tick=on_tick: self.send(on, tick), cliptune.time_notation.Ticks(on_tick))

		self.transport.schedule_once(lambda _time, tick=off_tick: self.send(off, tick), cliptune.time_notation.Ticks(off_tick))


	def send (self, message: mido.Message, tick: float) -> None:

		"""
		Send one message now, tracking held notes and recording it at ``tick``.
		"""

		key = (message.channel, message.note)

		if message.type == "note_on" and message.velocity > 0:
			self.active_notes.add(key)
		else:
			self.active_notes.discard(key)

		if self.recording:
			self.recorded_events.append((tick, message))

		self.open()

		if self.midi_out is not None:
			try:
				self.midi_out.send(message)
			except Exception:
				logger.exception("MIDI send failed (device may be disconnected)")


	def _on_transport_stop (self) -> None:

		"""Release every held note when the transport stops."""

		for channel, note in sorted(self.active_notes):
			self.send(cliptune.midi_utils.note_message(note, 0, channel, on=False), self.transport.ticks)

		self.active_notes.clear()


	def to_midi_file (self) -> mido.MidiFile:

		"""
		Build a single-track MIDI file from the recorded messages.
		"""

		mid = mido.MidiFile(type=1)
		track = mido.MidiTrack()
		mid.tracks.append(track)
		mid.ticks_per_beat = cliptune.constants.MIDI_FILE_TICKS_PER_BEAT

		scale = mid.ticks_per_beat / self.transport.ppq

		track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(self.transport.bpm), time=0))

		last_tick = 0.0

		for tick, message in sorted(self.recorded_events, key=lambda item: item[0]):

			delta = max(0, int(round((tick - last_tick) * scale)))
			track.append(message.copy(time=delta))
			last_tick = tick

		return mid


	def save_recording (self, filename: str) -> None:

		"""Write the recorded messages to ``filename``."""

		logger.info(f"Saving MIDI recording ({len(self.recorded_events)} events) to {filename}...")

		self.to_midi_file().save(filename)

		logger.info(f"Saved {filename}")


class AudioContext:

	"""
	A transport plus the destination that producers in this context play into.

	Producers, effects and channels belong to exactly one context. Use
	``AudioContext.offline()`` for rendering and ``default_context()`` for the
	shared real-time one.
	"""

	def __init__ (
		self,
		bpm: float = cliptune.constants.DEFAULT_BPM,
		transport: typing.Optional[Transport] = None,
		destination: typing.Optional[MidiDestination] = None,
		output_device_name: typing.Optional[str] = None,
		open_port: bool = True,
		record: bool = False,
		render_mode: bool = False
	) -> None:

		self.transport = transport if transport is not None else Transport(bpm=bpm, render_mode=render_mode)

		if destination is None:
			destination = MidiDestination(self.transport, output_device_name=output_device_name, open_port=open_port, record=record)

		self.destination = destination


	@classmethod
	def offline (cls, bpm: float = cliptune.constants.DEFAULT_BPM) -> "AudioContext":

		"""A render-mode context that records instead of opening a port."""

		return cls(bpm=bpm, open_port=False, record=True, render_mode=True)


	@property
	def render_mode (self) -> bool:

		return self.transport.render_mode


	def __repr__ (self) -> str:

		kind = "offline" if self.render_mode else "realtime"

		return f"<AudioContext {kind} bpm={self.transport.bpm:g} at {id(self):#x}>"


_default_context: typing.Optional[AudioContext] = None


def default_context () -> AudioContext:

	"""
	The process-wide real-time context, created on first use.
	"""

	global _default_context

	if _default_context is None:
		_default_context = AudioContext()

	return _default_context


def set_default_context (context: typing.Optional[AudioContext]) -> typing.Optional[AudioContext]:

	"""
	Replace the process-wide context (``None`` resets it). Returns the previous one.
	"""

	global _default_context

	previous = _default_context
	_default_context = context

	return previous
