"""Channels: one sound source playing one of several clips at a time."""

import asyncio
import dataclasses
import logging
import math
import random
import typing

import cliptune.acquisition
import cliptune.clip
import cliptune.constants
import cliptune.engine
import cliptune.errors
import cliptune.event_emitter
import cliptune.params
import cliptune.time_notation


logger = logging.getLogger(__name__)

EventCallback = typing.Callable[[str, typing.Dict[str, typing.Any]], typing.Any]
PlayerCallback = typing.Callable[[typing.Dict[str, typing.Any]], typing.Any]


def next_position (
	transport: cliptune.engine.Transport,
	align: typing.Optional[cliptune.time_notation.TimeValue] = None,
	align_offset: typing.Optional[cliptune.time_notation.TimeValue] = None
) -> cliptune.time_notation.Ticks:

	"""
	The next position a clip should start or stop at.

	Within the first beat of the transport this is the very beginning;
	afterwards it is the next ``align`` boundary (default one bar) shifted by
	``align_offset``.
	"""

	ticks = transport.ticks

	if ticks < transport.to_ticks("4n"):
		return cliptune.time_notation.Ticks(0)

	grid = transport.to_ticks(align or cliptune.constants.DEFAULT_ALIGN)
	offset = transport.to_ticks(align_offset or cliptune.constants.DEFAULT_ALIGN_OFFSET)

	return cliptune.time_notation.Ticks(math.ceil(ticks / grid + 1) * grid + offset)


class Channel:

	"""
	A sound source plus a row of clip slots, at most one of them playing.

	The sound source is acquired in the background (``initializer``) while
	the clips are built straight away. Clip errors are raised to the caller
	as ``ClipError`` naming the 1-based clip; acquisition errors arrive later
	as an ``"error"`` event and leave the channel failed for good.

	Events (on ``events`` and the optional ``event_cb``):
		``"loaded"`` - the sound source is ready.
		``"error"`` - acquisition failed, or a step failed to trigger.
		``"note"`` - a step was dispatched; the payload carries the ``Event``.

	Example:
		```python
		channel = Channel(
			idx = 0,
			instrument = "PolySynth",
			clips = [{"pattern": "x-x_", "notes": "C4 E4"}, {"pattern": "xxxx", "notes": "CM"}],
		)
		channel.events.on("loaded", lambda payload: channel.start_clip(0))
		```
	"""

	def __init__ (
		self,
		idx: typing.Any = 0,
		name: typing.Optional[str] = None,
		clips: typing.Optional[typing.Sequence[typing.Any]] = None,
		context: typing.Optional[cliptune.engine.AudioContext] = None,
		volume: typing.Optional[float] = None,
		effects: typing.Any = None,
		event_cb: typing.Optional[EventCallback] = None,
		player_cb: typing.Optional[PlayerCallback] = None,
		synth: typing.Any = None,
		instrument: typing.Any = None,
		sample: typing.Any = None,
		buffer: typing.Any = None,
		samples: typing.Optional[typing.Dict[str, str]] = None,
		base_url: str = "",
		sampler: typing.Any = None,
		player: typing.Any = None,
		external: typing.Any = None,
		rng: typing.Optional[random.Random] = None,
		**clip_defaults: typing.Any
	) -> None:

		"""
		Create the channel and start acquiring its sound source.

		Needs a running event loop. Keyword arguments that are not channel
		options (``subdiv``, ``amp``, ``dur`` ...) become defaults for every
		clip of the channel.
		"""

		self.idx = idx or 0
		self.name = name or f"ch {idx}"
		self.context = context if context is not None else cliptune.engine.default_context()
		self.event_cb = event_cb
		self.player_cb = player_cb
		self.rng = rng
		self.clip_defaults = clip_defaults
		self.events = cliptune.event_emitter.EventEmitter()

		self.has_loaded = False
		self.has_failed: typing.Optional[BaseException] = None

		self._clips: typing.List[typing.Optional[cliptune.clip.Clip]] = []
		self._active_idx = -1

		source = cliptune.acquisition.resolve_source(
			synth = synth,
			instrument = instrument,
			sample = sample,
			buffer = buffer,
			samples = samples,
			base_url = base_url,
			sampler = sampler,
			player = player,
			external = external,
		)

		acquisition = cliptune.acquisition.acquire(source, self.context, volume=volume, effects=effects, label=self.label)

		self.producer = acquisition.producer
		self.kind = acquisition.kind
		self.external = acquisition.external
		self.initializer = acquisition.ready

		try:
			for i, params in enumerate(clips or []):
				try:
					self.add_clip(params)
				except Exception as e:
					raise cliptune.errors.ClipError(str(e), i + 1) from e

		except cliptune.errors.ClipError as e:
			self.has_failed = e
			self.initializer.cancel()
			logger.error(f"Channel {self.label}: {e}")
			raise

		self.initializer.add_done_callback(self._on_initialized)


	@property
	def label (self) -> str:

		return f"channel idx {self.idx}, {self.name}"


	@property
	def clips (self) -> typing.List[typing.Optional[cliptune.clip.Clip]]:

		return self._clips


	@property
	def active_clip_idx (self) -> int:

		"""Index of the clip that is playing, or -1."""

		return self._active_idx


	def create_clip (self, params: cliptune.params.ClipParams) -> cliptune.clip.Clip:

		"""Build a clip played by this channel from already normalised options."""

		return cliptune.clip.Clip(
			params,
			self,
			self.context.transport,
			on_note = self._on_note,
			on_error = self._on_trigger_error,
			rng = self.rng,
		)


	def add_clip (self, params: typing.Union[cliptune.params.ClipParams, typing.Dict[str, typing.Any]], idx: typing.Optional[int] = None) -> None:

		"""
		Put a clip in slot ``idx`` (default: after the last slot).

		Options without a pattern reserve an empty slot.
		"""

		if idx is None:
			idx = len(self._clips)

		if isinstance(params, cliptune.params.ClipParams):
			pattern = params.pattern
		else:
			pattern = (params or {}).get("pattern") or self.clip_defaults.get("pattern")

		while len(self._clips) <= idx:
			self._clips.append(None)

		if not pattern:
			self._clips[idx] = None
			return

		self._clips[idx] = cliptune.clip.clip(params, channel=self)

		logger.debug(f"Channel {self.label}: clip {pattern!r} in slot {idx}")


	def start_clip (self, idx: int, position: typing.Optional[cliptune.time_notation.TimeValue] = None) -> None:

		"""
		Start the clip in slot ``idx``, stopping every other clip of the channel at the same position.

		Without a position the clip starts at its next aligned position.
		"""

		clip = self._slot(idx)

		if position is None:
			position = self._next_position(clip)

		for i, other in enumerate(self._clips):
			if i != idx and other is not None:
				other.stop(position)

		if clip is None:
			self._active_idx = -1
			return

		self._active_idx = idx

		if clip.state != "started":
			clip.start(position)


	def stop_clip (self, idx: int, position: typing.Optional[cliptune.time_notation.TimeValue] = None) -> None:

		clip = self._slot(idx)

		if position is None:
			position = self._next_position(clip)

		if clip is not None:
			clip.stop(position)

		if idx == self._active_idx:
			self._active_idx = -1


	def reset_clips (self) -> None:

		"""Put every clip back to stopped after the transport dropped its scheduled callbacks."""

		for clip in self._clips:
			if clip is not None:
				clip.reset()

		self._active_idx = -1



	def set_volume (self, db: float) -> None:

		"""Set the producer's volume in dB and forward it to an external output."""

		if self.producer is not None:
			self.producer.volume = db

		if self.external is not None and callable(getattr(self.external, "set_volume", None)):
			self.external.set_volume(db)


	async def wait_loaded (self) -> bool:

		"""
		Wait until acquisition has finished either way; True if the channel loaded.
		"""

		if not self.initializer.done():
			await asyncio.wait({self.initializer})

		return self.has_loaded


	def _slot (self, idx: int) -> typing.Optional[cliptune.clip.Clip]:

		if 0 <= idx < len(self._clips):
			return self._clips[idx]

		return None


	def _next_position (self, clip: typing.Optional[cliptune.clip.Clip]) -> cliptune.time_notation.Ticks:

		if clip is None:
			return next_position(self.context.transport)

		return next_position(self.context.transport, clip.params.align, clip.params.align_offset)


	def _on_initialized (self, task: "asyncio.Task[typing.Any]") -> None:

		if task.cancelled():
			return

		error = task.exception()

		if error is not None:
			self.has_failed = error
			logger.error(f"Channel {self.label} failed to load: {error}")
			self._emit("error", {"error": error})
			return

		producer = task.result()

		if producer is not None:
			self.producer = producer

		self.has_loaded = True

		logger.info(f"Channel {self.label} loaded")

		self._emit("loaded", {})


	def _on_note (self, event: typing.Any) -> None:

		self._emit("note", {"event": event})

		if self.player_cb is not None:
			self.player_cb({**dataclasses.asdict(event), "channel": self})


	def _on_trigger_error (self, error: cliptune.errors.TriggerError) -> None:

		self._emit("error", {"error": error})


	def _emit (self, event_name: str, payload: typing.Dict[str, typing.Any]) -> None:

		payload["channel"] = self

		self.events.emit(event_name, payload)

		if self.event_cb is not None:
			self.event_cb(event_name, payload)
