"""Sound producers and effects.

Producers turn triggers into ``NoteMessage`` objects and push them down their
chain: through any effects and finally into the context's destination.
Every producer and effect exposes the same small surface:

- ``context``: the ``AudioContext`` it belongs to (``None`` until bound)
- ``get()``: the options needed to rebuild an equivalent object elsewhere
- ``loaded`` / ``on_load(callback)``: readiness, for objects that load data
- ``chain(*nodes)`` / ``connect(node)`` / ``to_destination()``: routing

Volumes are in decibels and scale note velocities (0 dB leaves them as they
are, -6 dB roughly halves them).
"""

import asyncio
import logging
import pathlib
import typing

import requests

import cliptune.constants.velocity
import cliptune.engine
import cliptune.errors
import cliptune.theory
import cliptune.time_notation


logger = logging.getLogger(__name__)

LoadCallback = typing.Callable[[typing.Optional[BaseException]], typing.Any]
NoteInput = typing.Union[str, int]

HTTP_TIMEOUT = 30.0


def db_to_gain (db: float) -> float:

	"""Convert decibels to a linear gain factor."""

	return float(10 ** (db / 20.0))


def note_number (note: NoteInput) -> int:

	"""MIDI number of a note name or number."""

	if isinstance(note, int):
		return note

	return cliptune.theory.note_to_midi(note)


class Node:

	"""
	Something that receives note messages and forwards them to its outputs.
	"""

	def __init__ (self, context: typing.Optional[cliptune.engine.AudioContext] = None) -> None:

		self.context = context
		self.outputs: typing.List[typing.Any] = []


	def connect (self, node: typing.Any) -> typing.Any:

		"""
		Send this node's output to ``node``; returns ``node`` for chaining.

		Connecting to a node that is already an output does nothing.
		"""

		if not any(output is node for output in self.outputs):
			self.outputs.append(node)

		return node


	def disconnect (self) -> None:

		self.outputs = []


	def chain (self, *nodes: typing.Any) -> "Node":

		"""Connect ``self -> nodes[0] -> nodes[1] -> ...`` and return ``self``."""

		current: typing.Any = self

		for node in nodes:
			current.connect(node)
			current = node

		return self


	def to_destination (self) -> "Node":

		"""Connect this node to its context's destination."""

		self.connect(self._require_context().destination)

		return self


	def receive (self, message: cliptune.engine.NoteMessage) -> None:

		self._forward(message)


	def _forward (self, message: cliptune.engine.NoteMessage) -> None:

		for node in self.outputs:
			node.receive(message)


	def _require_context (self) -> cliptune.engine.AudioContext:

		if self.context is None:
			raise cliptune.errors.ConfigurationError(f"{type(self).__name__} is not bound to an audio context")

		return self.context


	def _seconds (self, value: cliptune.time_notation.TimeValue) -> float:

		return self._require_context().transport.to_seconds(value)


	def _now (self, time: typing.Optional[float]) -> float:

		return self._require_context().transport.seconds if time is None else time


	def get (self) -> typing.Dict[str, typing.Any]:

		return {}


	def dispose (self) -> None:

		self.disconnect()


class AudioBuffer:

	"""
	Raw sample data loaded from a local path or an http(s) URL.

	Loading starts as soon as a running event loop is available (at
	construction, or on the first ``on_load``/``load`` call). ``data`` holds
	the bytes once ``loaded`` is True.
	"""

	def __init__ (self, url: typing.Optional[str] = None, data: typing.Optional[bytes] = None) -> None:

		if url is None and data is None:
			raise cliptune.errors.ConfigurationError("AudioBuffer needs a url or data")

		self.url = url
		self.data = data
		self.loaded = data is not None
		self.error: typing.Optional[BaseException] = None
		self._callbacks: typing.List[LoadCallback] = []
		self._task: typing.Optional["asyncio.Task[None]"] = None

		if not self.loaded:
			try:
				asyncio.get_running_loop()
			except RuntimeError:
				logger.debug(f"No running loop; loading {url} is deferred")
			else:
				self._ensure_loading()


	def _ensure_loading (self) -> None:

		if self._task is None and not self.loaded and self.error is None:
			self._task = asyncio.get_running_loop().create_task(self._load())


	async def _load (self) -> None:

		assert self.url is not None

		try:
			self.data = await asyncio.to_thread(_read_url, self.url)

		except (OSError, requests.RequestException) as e:
			self.error = cliptune.errors.AcquisitionError(f"Could not load {self.url}: {e}")
			logger.error(f"Could not load {self.url}: {e}")

		else:
			self.loaded = True
			logger.debug(f"Loaded {len(self.data)} bytes from {self.url}")

		callbacks, self._callbacks = self._callbacks, []

		for callback in callbacks:
			callback(self.error)


	def on_load (self, callback: LoadCallback) -> None:

		"""
		Call ``callback(None)`` once loaded, or ``callback(error)`` if loading failed.
		"""

		if self.loaded or self.error is not None:
			callback(self.error)
			return

		self._callbacks.append(callback)
		self._ensure_loading()


	async def load (self) -> "AudioBuffer":

		"""Load (if needed) and return the buffer; raises ``AcquisitionError`` on failure."""

		if not self.loaded:
			self._ensure_loading()
			assert self._task is not None
			await asyncio.shield(self._task)

		if self.error is not None:
			raise self.error

		return self


def _read_url (url: str) -> bytes:

	"""Blocking read of a local file or an http(s) resource."""

	if url.startswith(("http://", "https://")):
		response = requests.get(url, timeout=HTTP_TIMEOUT)
		response.raise_for_status()
		return response.content

	return pathlib.Path(url).read_bytes()


class SoundProducer (Node):

	"""
	Base class for instruments: a MIDI channel, a volume in dB and readiness.
	"""

	def __init__ (
		self,
		context: typing.Optional[cliptune.engine.AudioContext] = None,
		channel: int = 0,
		volume: float = 0.0
	) -> None:

		super().__init__(context)

		self.channel = channel
		self.volume = volume


	@property
	def name (self) -> str:

		return type(self).__name__


	@property
	def loaded (self) -> bool:

		return True


	def on_load (self, callback: LoadCallback) -> None:

		callback(None)


	def get (self) -> typing.Dict[str, typing.Any]:

		return {"channel": self.channel, "volume": self.volume}


	def _velocity (self, velocity: float) -> int:

		scaled = velocity * db_to_gain(self.volume)

		return int(max(cliptune.constants.velocity.MIN_VELOCITY, min(cliptune.constants.velocity.MAX_VELOCITY, round(scaled))))


	def _play (self, note: NoteInput, duration: cliptune.time_notation.TimeValue, time: typing.Optional[float], velocity: float) -> None:

		message = cliptune.engine.NoteMessage(
			note = note_number(note),
			velocity = self._velocity(velocity),
			duration = self._seconds(duration),
			time = self._now(time),
			channel = self.channel
		)

		self._forward(message)


class Synth (SoundProducer):

	"""A monophonic voice: one note per trigger."""

	def trigger_attack_release (
		self,
		note: NoteInput,
		duration: cliptune.time_notation.TimeValue,
		time: typing.Optional[float] = None,
		velocity: float = cliptune.constants.velocity.DEFAULT_AMP
	) -> None:

		self._play(note, duration, time, velocity)


class PolySynth (SoundProducer):

	"""
	A polyphonic instrument built from a voice class; triggers accept chords.
	"""

	def __init__ (
		self,
		voice: typing.Type[SoundProducer] = Synth,
		context: typing.Optional[cliptune.engine.AudioContext] = None,
		channel: int = 0,
		volume: float = 0.0,
		max_polyphony: int = 32
	) -> None:

		super().__init__(context, channel, volume)

		self.voice = voice
		self.max_polyphony = max_polyphony


	def get (self) -> typing.Dict[str, typing.Any]:

		return {**super().get(), "voice": self.voice, "max_polyphony": self.max_polyphony}


	def trigger_attack_release (
		self,
		notes: typing.Union[NoteInput, typing.Sequence[NoteInput]],
		duration: cliptune.time_notation.TimeValue,
		time: typing.Optional[float] = None,
		velocity: float = cliptune.constants.velocity.DEFAULT_AMP
	) -> None:

		if isinstance(notes, (str, int)):
			notes = [notes]

		if len(notes) > self.max_polyphony:
			logger.warning(f"{len(notes)} notes exceed max_polyphony={self.max_polyphony}; extra notes dropped")
			notes = list(notes)[:self.max_polyphony]

		for note in notes:
			self._play(note, duration, time, velocity)


class NoiseSynth (SoundProducer):

	"""An unpitched source: triggers take only a duration and play a fixed drum note."""

	def __init__ (
		self,
		context: typing.Optional[cliptune.engine.AudioContext] = None,
		channel: int = 9,
		volume: float = 0.0,
		note: NoteInput = 38
	) -> None:

		super().__init__(context, channel, volume)

		self.note = note


	def get (self) -> typing.Dict[str, typing.Any]:

		return {**super().get(), "note": self.note}


	def trigger_attack_release (
		self,
		duration: cliptune.time_notation.TimeValue,
		time: typing.Optional[float] = None,
		velocity: float = cliptune.constants.velocity.DEFAULT_AMP
	) -> None:

		self._play(self.note, duration, time, velocity)


class Player (SoundProducer):

	"""
	Plays one sample per trigger, as a fixed note of fixed length.
	"""

	def __init__ (
		self,
		url: typing.Union[str, AudioBuffer, None] = None,
		context: typing.Optional[cliptune.engine.AudioContext] = None,
		channel: int = 9,
		volume: float = 0.0,
		note: NoteInput = 36,
		duration: cliptune.time_notation.TimeValue = "16n"
	) -> None:

		super().__init__(context, channel, volume)

		if url is None:
			raise cliptune.errors.ConfigurationError("Player needs a url or an AudioBuffer")

		self.buffer = url if isinstance(url, AudioBuffer) else AudioBuffer(url)
		self.note = note
		self.duration = duration


	@property
	def loaded (self) -> bool:

		return self.buffer.loaded


	def on_load (self, callback: LoadCallback) -> None:

		self.buffer.on_load(callback)


	def get (self) -> typing.Dict[str, typing.Any]:

		return {**super().get(), "note": self.note, "duration": self.duration}


	def start (
		self,
		time: typing.Optional[float] = None,
		duration: typing.Optional[cliptune.time_notation.TimeValue] = None,
		velocity: float = cliptune.constants.velocity.DEFAULT_AMP
	) -> None:

		if not self.buffer.loaded:
			raise cliptune.errors.CliptuneError(f"Player buffer {self.buffer.url} is not loaded")

		self._play(self.note, duration if duration is not None else self.duration, time, velocity)


class Sampler (SoundProducer):

	"""
	A polyphonic instrument backed by one buffer per note.

	Readiness is the aggregate of all buffers: ``loaded`` is True only when
	every buffer has loaded, and ``on_load`` fires once for the whole set.
	"""

	def __init__ (
		self,
		urls: typing.Optional[typing.Dict[str, str]] = None,
		base_url: str = "",
		context: typing.Optional[cliptune.engine.AudioContext] = None,
		channel: int = 0,
		volume: float = 0.0,
		attack: float = 0.0,
		release: float = 0.1
	) -> None:

		super().__init__(context, channel, volume)

		self.urls: typing.Dict[str, str] = dict(urls or {})
		self.base_url = base_url
		self.attack = attack
		self.release = release
		self.buffers: typing.Dict[str, AudioBuffer] = {
			note: AudioBuffer(base_url + url) for note, url in self.urls.items()
		}


	@property
	def loaded (self) -> bool:

		return all(buffer.loaded for buffer in self.buffers.values())


	def on_load (self, callback: LoadCallback) -> None:

		pending = [buffer for buffer in self.buffers.values() if not buffer.loaded]

		if not pending:
			callback(None)
			return

		remaining = {"count": len(pending), "done": False}

		def buffer_done (error: typing.Optional[BaseException]) -> None:

			if remaining["done"]:
				return

			remaining["count"] -= 1

			if error is not None or remaining["count"] == 0:
				remaining["done"] = True
				callback(error)

		for buffer in pending:
			buffer.on_load(buffer_done)


	def get (self) -> typing.Dict[str, typing.Any]:

		return {
			**super().get(),
			"urls": dict(self.urls),
			"base_url": self.base_url,
			"attack": self.attack,
			"release": self.release,
		}


	def trigger_attack_release (
		self,
		notes: typing.Union[NoteInput, typing.Sequence[NoteInput]],
		duration: cliptune.time_notation.TimeValue,
		time: typing.Optional[float] = None,
		velocity: float = cliptune.constants.velocity.DEFAULT_AMP
	) -> None:

		if isinstance(notes, (str, int)):
			notes = [notes]

		for note in notes:
			self._play(note, duration, time, velocity)


class Effect (Node):

	"""Base class for note effects."""

	@property
	def name (self) -> str:

		return type(self).__name__


class Transpose (Effect):

	"""Shift every note by a number of semitones."""

	def __init__ (self, semitones: int = 0, context: typing.Optional[cliptune.engine.AudioContext] = None) -> None:

		super().__init__(context)

		self.semitones = semitones


	def get (self) -> typing.Dict[str, typing.Any]:

		return {"semitones": self.semitones}


	def receive (self, message: cliptune.engine.NoteMessage) -> None:

		note = max(0, min(127, message.note + self.semitones))

		self._forward(cliptune.engine.NoteMessage(note, message.velocity, message.duration, message.time, message.channel))


class VelocityScale (Effect):

	"""Multiply every velocity by ``factor``."""

	def __init__ (self, factor: float = 1.0, context: typing.Optional[cliptune.engine.AudioContext] = None) -> None:

		super().__init__(context)

		self.factor = factor


	def get (self) -> typing.Dict[str, typing.Any]:

		return {"factor": self.factor}


	def receive (self, message: cliptune.engine.NoteMessage) -> None:

		velocity = int(max(0, min(127, round(message.velocity * self.factor))))

		self._forward(cliptune.engine.NoteMessage(message.note, velocity, message.duration, message.time, message.channel))


class Echo (Effect):

	"""
	Repeat every note ``repeats`` times, ``delay`` apart, each quieter by ``feedback``.

	An echo passes notes through unchanged until ``start()`` is called.
	"""

	def __init__ (
		self,
		delay: cliptune.time_notation.TimeValue = "8n",
		feedback: float = 0.5,
		repeats: int = 2,
		context: typing.Optional[cliptune.engine.AudioContext] = None
	) -> None:

		super().__init__(context)

		self.delay = delay
		self.feedback = feedback
		self.repeats = repeats
		self.started = False


	def get (self) -> typing.Dict[str, typing.Any]:

		return {"delay": self.delay, "feedback": self.feedback, "repeats": self.repeats}


	def start (self) -> "Echo":

		self.started = True

		return self


	def receive (self, message: cliptune.engine.NoteMessage) -> None:

		self._forward(message)

		if not self.started:
			return

		delay = self._seconds(self.delay)
		velocity = float(message.velocity)

		for repeat in range(1, self.repeats + 1):

			velocity *= self.feedback

			if round(velocity) <= 0:
				break

			self._forward(cliptune.engine.NoteMessage(
				message.note,
				int(round(velocity)),
				message.duration,
				message.time + delay * repeat,
				message.channel
			))


class ExternalMidiOutput:

	"""
	An external output module that plays into its own MIDI port.

	Nothing is routed through the context's destination: notes are sent to
	the port opened by ``init()`` and released through the context's transport.
	"""

	def __init__ (self, device_name: typing.Optional[str] = None, channel: int = 0) -> None:

		self.device_name = device_name
		self.channel = channel
		self.volume = 0.0
		self.context: typing.Optional[cliptune.engine.AudioContext] = None
		self.destination: typing.Optional[cliptune.engine.MidiDestination] = None


	async def init (self, context: cliptune.engine.AudioContext) -> None:

		"""Open the port in a worker thread; raises ``AcquisitionError`` when none is available."""

		self.context = context
		self.destination = cliptune.engine.MidiDestination(context.transport, output_device_name=self.device_name)

		await asyncio.to_thread(self.destination.open)

		if self.destination.midi_out is None:
			name = self.device_name or "(first available)"
			raise cliptune.errors.AcquisitionError(f"MIDI output {name} could not be opened")


	def set_volume (self, db: float) -> None:

		self.volume = db


	def trigger_attack_release (
		self,
		note: NoteInput,
		duration: float,
		time: float,
		velocity: float = cliptune.constants.velocity.DEFAULT_AMP
	) -> None:

		if self.destination is None:
			raise cliptune.errors.CliptuneError("ExternalMidiOutput used before init()")

		velocity = max(0.0, min(127.0, velocity * db_to_gain(self.volume)))

		self.destination.receive(cliptune.engine.NoteMessage(note_number(note), int(round(velocity)), duration, time, self.channel))


SYNTHS: typing.Dict[str, typing.Type[SoundProducer]] = {
	"Synth": Synth,
	"PolySynth": PolySynth,
	"NoiseSynth": NoiseSynth,
	"Player": Player,
	"Sampler": Sampler,
}

EFFECTS: typing.Dict[str, typing.Type[Effect]] = {
	"Transpose": Transpose,
	"VelocityScale": VelocityScale,
	"Echo": Echo,
}
