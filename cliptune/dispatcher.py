"""Step dispatcher: turns pattern steps into note events and producer triggers."""

import dataclasses
import logging
import random
import typing

import cliptune.acquisition
import cliptune.constants
import cliptune.errors
import cliptune.params
import cliptune.pattern
import cliptune.sequence_utils
import cliptune.time_notation


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Event:

	"""
	One triggered step, as reported to note listeners.

	``note`` is a list of note names (a chord or a single note) or ``None``
	for sample players; ``duration`` is whatever the clip supplied (notation
	or seconds); ``time`` is the transport time in seconds.
	"""

	note: typing.Optional[typing.List[typing.Any]]
	duration: cliptune.time_notation.TimeValue
	time: float
	counter: int
	velocity: int


class Host (typing.Protocol):

	"""What the dispatcher needs from the object that owns the producer."""

	producer: typing.Any
	kind: cliptune.acquisition.ProducerKind
	external: typing.Any
	has_loaded: bool


def get_note (
	element: str,
	params: cliptune.params.ClipParams,
	counter: int,
	rng: typing.Optional[random.Random] = None
) -> typing.Optional[typing.List[typing.Any]]:

	"""
	Note (list) for a step.

	``R`` steps pick uniformly from the random pool when there is one; every
	other step cycles through ``notes`` by ``counter``. An empty pool gives ``None``.
	"""

	if element == "R" and params.random_notes:
		return cliptune.sequence_utils.pick_one(params.random_notes, rng=rng)

	if params.notes:
		return params.notes[counter % (len(params.notes) or 1)]

	return None


def get_duration (
	params: cliptune.params.ClipParams,
	counter: int,
	step_durations: typing.Optional[typing.Sequence[cliptune.time_notation.TimeValue]] = None
) -> cliptune.time_notation.TimeValue:

	"""
	``durations`` (cycled) first, then ``dur``, then the pattern's own
	``step_durations`` (cycled), then ``subdiv``, then ``"8n"``.
	"""

	if params.durations:
		return params.durations[counter % len(params.durations)]

	if params.dur:
		return params.dur

	if step_durations:
		return step_durations[counter % len(step_durations)]

	return params.subdiv or cliptune.constants.DEFAULT_DUR


def get_level (params: cliptune.params.ClipParams, counter: int, cycle_steps: int = 0) -> int:

	"""
	Velocity (0-127) for the ``counter``-th note step.

	An ``accent`` string takes precedence (``x`` plays at ``amp``, ``-`` at
	``accent_low``); otherwise ``sizzle`` shapes the level over the
	``cycle_steps`` note steps of one pattern pass; otherwise ``amp``.
	"""

	if params.accent:
		if params.accent[counter % len(params.accent)] == "x":
			return params.amp
		return params.accent_low

	if params.sizzle and cycle_steps > 0:
		levels = cliptune.sequence_utils.sizzle_levels(cycle_steps, params.sizzle, params.sizzle_reps, high=params.amp, low=params.accent_low)
		return levels[counter % cycle_steps]

	return params.amp


class StepDispatcher:

	"""
	Processes one pattern element per call.

	The trigger for the host's producer is chosen once, at construction. The
	step counter advances on every ``x``/``R`` step, including steps that
	arrive before the host has loaded (those are dropped).

	Example:
		```python
		dispatcher = StepDispatcher(params, host, on_note=events.append)
		dispatcher(0.0, "x")
		```
	"""

	def __init__ (
		self,
		params: cliptune.params.ClipParams,
		host: Host,
		on_note: typing.Optional[typing.Callable[[Event], typing.Any]] = None,
		on_error: typing.Optional[typing.Callable[[cliptune.errors.TriggerError], typing.Any]] = None,
		rng: typing.Optional[random.Random] = None,
		step_durations: typing.Optional[typing.Sequence[cliptune.time_notation.TimeValue]] = None,
		transport: typing.Any = None
	) -> None:

		self.params = params
		self.host = host
		self.on_note = on_note
		self.on_error = on_error
		self.rng = rng
		self.step_durations = list(step_durations or [])
		self.transport = transport
		self.step_counter = 0
		self.cycle_steps = cliptune.pattern.count_note_steps(params.pattern)

		triggers = {
			cliptune.acquisition.ProducerKind.PLAYER: self._trigger_player,
			cliptune.acquisition.ProducerKind.POLY: self._trigger_poly,
			cliptune.acquisition.ProducerKind.NOISE: self._trigger_noise,
			cliptune.acquisition.ProducerKind.EXTERNAL: self._trigger_external,
			cliptune.acquisition.ProducerKind.GENERIC: self._trigger_generic,
		}

		self._trigger = triggers[host.kind]
		self._resolves_note = host.kind is not cliptune.acquisition.ProducerKind.PLAYER


	def reset (self) -> None:

		self.step_counter = 0


	def __call__ (self, time: float, element: str) -> None:

		if element not in cliptune.pattern.NOTE_STEPS:
			return

		counter = self.step_counter
		self.step_counter += 1

		if not self.host.has_loaded:
			logger.debug(f"Dropping step {counter}: sound source not loaded yet")
			return

		note = get_note(element, self.params, counter, self.rng) if self._resolves_note else None
		duration = get_duration(self.params, counter, self.step_durations)
		velocity = get_level(self.params, counter, self.cycle_steps)

		if isinstance(duration, cliptune.time_notation.Ticks) and self.transport is not None:
			duration = self.transport.ticks_to_seconds(duration)

		if self.on_note is not None:

			try:
				self.on_note(Event(note=note, duration=duration, time=time, counter=counter, velocity=velocity))

			except Exception as e:
				self._report(cliptune.errors.TriggerError(f"Note listener failed at step {counter}: {e}", counter), e)

		try:
			self._trigger(note, duration, time, velocity)

		except Exception as e:
			self._report(cliptune.errors.TriggerError(f"Failed to trigger step {counter}: {e}", counter), e)


	def _report (self, error: cliptune.errors.TriggerError, cause: Exception) -> None:

		error.__cause__ = cause
		logger.error(str(error))

		if self.on_error is not None:
			self.on_error(error)



	def _trigger_player (self, note: typing.Any, duration: typing.Any, time: float, velocity: int) -> None:

		self.host.producer.start(time, velocity=velocity)


	def _trigger_poly (self, note: typing.Any, duration: typing.Any, time: float, velocity: int) -> None:

		if note is None:
			return

		self.host.producer.trigger_attack_release(note, duration, time, velocity=velocity)


	def _trigger_noise (self, note: typing.Any, duration: typing.Any, time: float, velocity: int) -> None:

		self.host.producer.trigger_attack_release(duration, time, velocity=velocity)


	def _trigger_external (self, note: typing.Any, duration: typing.Any, time: float, velocity: int) -> None:

		if note is None:
			return

		seconds = self._seconds(duration)

		self.host.external.trigger_attack_release(note[0], seconds, time, velocity=velocity)


	def _trigger_generic (self, note: typing.Any, duration: typing.Any, time: float, velocity: int) -> None:

		if note is None:
			return

		self.host.producer.trigger_attack_release(note[0], duration, time, velocity=velocity)


	def _seconds (self, duration: cliptune.time_notation.TimeValue) -> float:

		context = getattr(self.host, "context", None)

		if context is not None:
			return context.transport.to_seconds(duration)

		return cliptune.time_notation.to_seconds(duration, cliptune.constants.DEFAULT_BPM)
