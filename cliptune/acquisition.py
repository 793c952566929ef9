"""Sound-source acquisition.

A channel names its sound in one of several ways (a synth by name, an
instrument instance, a sample url, a note-to-url map, a sampler, a player or
an external output). ``resolve_source`` turns those keyword arguments into
exactly one source variant; ``acquire`` builds the producer right away and
returns an ``asyncio`` task that finishes the job:

1. wait until the producer (or the external output's ``init``) is ready
2. rebuild the producer in the target context if it belongs to another one
3. apply the volume and wire the effect chain into the destination

Any failure in the task surfaces as an ``AcquisitionError`` naming the channel.
"""

import asyncio
import dataclasses
import enum
import logging
import typing

import cliptune.engine
import cliptune.errors
import cliptune.instruments


logger = logging.getLogger(__name__)

SOURCE_KEYS = ("synth", "instrument", "sample", "sampler", "samples", "buffer", "player", "external")


class ProducerKind (enum.Enum):

	"""How the dispatcher triggers a producer; fixed when the producer is acquired."""

	PLAYER = "player"
	POLY = "poly"
	NOISE = "noise"
	EXTERNAL = "external"
	GENERIC = "generic"


@dataclasses.dataclass
class SynthSource:

	"""A synth from the registry by name (with preset options), or the deprecated instance form."""

	name: typing.Optional[str] = None
	preset: typing.Dict[str, typing.Any] = dataclasses.field(default_factory=dict)
	instance: typing.Optional[cliptune.instruments.SoundProducer] = None


@dataclasses.dataclass
class InstrumentSource:

	name: typing.Optional[str] = None
	instance: typing.Optional[cliptune.instruments.SoundProducer] = None


@dataclasses.dataclass
class SampleSource:

	url: typing.Optional[str] = None
	buffer: typing.Optional[cliptune.instruments.AudioBuffer] = None


@dataclasses.dataclass
class SamplesSource:

	urls: typing.Dict[str, str]
	base_url: str = ""


@dataclasses.dataclass
class SamplerSource:

	sampler: cliptune.instruments.Sampler


@dataclasses.dataclass
class PlayerSource:

	player: cliptune.instruments.Player


@dataclasses.dataclass
class ExternalSource:

	delegate: typing.Any


SoundSource = typing.Union[
	SynthSource,
	InstrumentSource,
	SampleSource,
	SamplesSource,
	SamplerSource,
	PlayerSource,
	ExternalSource,
]

EffectSpec = typing.Union[str, cliptune.instruments.Effect]


def resolve_source (
	synth: typing.Any = None,
	instrument: typing.Any = None,
	sample: typing.Any = None,
	buffer: typing.Any = None,
	samples: typing.Optional[typing.Dict[str, str]] = None,
	base_url: str = "",
	sampler: typing.Optional[cliptune.instruments.Sampler] = None,
	player: typing.Optional[cliptune.instruments.Player] = None,
	external: typing.Any = None
) -> SoundSource:

	"""
	Pick exactly one sound source from channel keyword arguments.

	``synth`` is a registry name (``"PolySynth"``) or a dict
	``{"synth": name, "preset": {...}}``; passing a producer instance as
	``synth`` still works but is deprecated in favour of ``instrument``.

	Raises ``ConfigurationError`` when more than one source is given
	(``sample`` and ``buffer`` count as one), or when none is.
	"""

	if synth is not None and instrument is not None:
		raise cliptune.errors.ConfigurationError("Either synth or instrument can be provided, but not both.")

	given = [
		name for name, value in (
			("synth", synth),
			("instrument", instrument),
			("sample", sample if sample is not None else buffer),
			("samples", samples),
			("sampler", sampler),
			("player", player),
			("external", external),
		)
		if value is not None
	]

	if len(given) > 1:
		raise cliptune.errors.ConfigurationError(f"Only one sound source can be provided, got {', '.join(given)}")

	if synth is not None:

		if isinstance(synth, str):
			return SynthSource(name=synth)

		if isinstance(synth, dict):
			name = synth.get("synth", synth.get("name"))
			if not name:
				raise cliptune.errors.ConfigurationError(f"Synth description needs a 'synth' name: {synth!r}")
			return SynthSource(name=name, preset=dict(synth.get("preset") or {}))

		logger.warning('The "synth" parameter with an instrument instance is deprecated. Please use the "instrument" parameter instead.')
		return SynthSource(instance=synth)

	if instrument is not None:

		if isinstance(instrument, str):
			return InstrumentSource(name=instrument)

		return InstrumentSource(instance=instrument)

	if sample is not None or buffer is not None:

		value = sample if sample is not None else buffer

		if isinstance(value, cliptune.instruments.AudioBuffer):
			return SampleSource(buffer=value)

		return SampleSource(url=value)

	if samples is not None:
		return SamplesSource(urls=dict(samples), base_url=base_url)

	if sampler is not None:
		return SamplerSource(sampler=sampler)

	if player is not None:
		return PlayerSource(player=player)

	if external is not None:
		return ExternalSource(delegate=external)

	raise cliptune.errors.ConfigurationError(
		"One of required synth|instrument|sample|sampler|samples|buffer|player|external is not provided!"
	)


def _from_registry (name: str, context: cliptune.engine.AudioContext, options: typing.Dict[str, typing.Any]) -> cliptune.instruments.SoundProducer:

	if name not in cliptune.instruments.SYNTHS:
		raise cliptune.errors.ConfigurationError(
			f"Unknown synth {name!r}; expected one of {sorted(cliptune.instruments.SYNTHS)}"
		)

	return cliptune.instruments.SYNTHS[name](context=context, **options)


def build_producer (source: SoundSource, context: cliptune.engine.AudioContext) -> typing.Optional[cliptune.instruments.SoundProducer]:

	"""
	Create (or adopt) the producer for a source. External sources have none.
	"""

	if isinstance(source, SynthSource):
		if source.instance is not None:
			return source.instance
		assert source.name is not None
		return _from_registry(source.name, context, source.preset)

	if isinstance(source, InstrumentSource):
		if source.instance is not None:
			return source.instance
		assert source.name is not None
		return _from_registry(source.name, context, {})

	if isinstance(source, SampleSource):
		return cliptune.instruments.Player(source.buffer if source.buffer is not None else source.url, context=context)

	if isinstance(source, SamplesSource):
		return cliptune.instruments.Sampler(source.urls, base_url=source.base_url, context=context)

	if isinstance(source, SamplerSource):
		return source.sampler

	if isinstance(source, PlayerSource):
		return source.player

	return None


def producer_kind (producer: typing.Any, external: typing.Any = None) -> ProducerKind:

	"""Classify a producer for the dispatcher."""

	if external is not None:
		return ProducerKind.EXTERNAL

	if isinstance(producer, cliptune.instruments.Player):
		return ProducerKind.PLAYER

	if isinstance(producer, (cliptune.instruments.PolySynth, cliptune.instruments.Sampler)):
		return ProducerKind.POLY

	if isinstance(producer, cliptune.instruments.NoiseSynth):
		return ProducerKind.NOISE

	return ProducerKind.GENERIC


async def wait_until_loaded (obj: typing.Any) -> None:

	"""
	Wait for an object's readiness primitive (``loaded`` plus ``on_load``).

	Objects without their own primitive are searched for the documented
	containers ``buffer`` and ``buffers``. Anything else is unsupported and
	raises ``AcquisitionError`` rather than being assumed ready.
	"""

	if hasattr(obj, "loaded") and hasattr(obj, "on_load"):

		if obj.loaded:
			return

		future: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()

		def done (error: typing.Optional[BaseException]) -> None:

			if future.done():
				return

			if error is not None:
				future.set_exception(error)
			else:
				future.set_result(None)

		obj.on_load(done)
		await future
		return

	if hasattr(obj, "buffer"):
		await wait_until_loaded(obj.buffer)
		return

	if hasattr(obj, "buffers"):
		buffers = obj.buffers.values() if isinstance(obj.buffers, dict) else obj.buffers
		await asyncio.gather(*(wait_until_loaded(buffer) for buffer in buffers))
		return

	raise cliptune.errors.AcquisitionError(f"Unsupported sound producer {type(obj).__name__}: no readiness primitive")


async def recreate_in_context (producer: typing.Any, context: cliptune.engine.AudioContext) -> typing.Any:

	"""
	Build an equivalent producer (or effect) bound to ``context`` and wait until it is ready.
	"""

	if isinstance(producer, cliptune.instruments.PolySynth):
		options = producer.get()
		new = cliptune.instruments.PolySynth(context=context, **options)

	elif isinstance(producer, cliptune.instruments.Player):
		options = producer.get()
		new = cliptune.instruments.Player(producer.buffer, context=context, **options)

	elif isinstance(producer, cliptune.instruments.Sampler):
		options = producer.get()
		new = cliptune.instruments.Sampler(context=context, **options)

	elif hasattr(producer, "get"):
		new = type(producer)(context=context, **producer.get())

	else:
		raise cliptune.errors.AcquisitionError(f"Cannot recreate {type(producer).__name__} in another context")

	logger.debug(f"Recreated {type(producer).__name__} in {context!r}")

	await wait_until_loaded(new)

	return new


def _as_list (effects: typing.Union[EffectSpec, typing.Sequence[EffectSpec], None]) -> typing.List[EffectSpec]:

	if effects is None:
		return []

	if isinstance(effects, (str, cliptune.instruments.Effect)):
		return [effects]

	return list(effects)


async def build_effects (effects: typing.Sequence[EffectSpec], context: cliptune.engine.AudioContext) -> typing.List[typing.Any]:

	"""
	Create effects in list order: names through the registry, instances reconciled to ``context``.
	Effects with a ``start()`` method are started.
	"""

	built: typing.List[typing.Any] = []

	for effect in effects:

		if isinstance(effect, str):

			if effect not in cliptune.instruments.EFFECTS:
				raise cliptune.errors.ConfigurationError(
					f"Unknown effect {effect!r}; expected one of {sorted(cliptune.instruments.EFFECTS)}"
				)

			node = cliptune.instruments.EFFECTS[effect](context=context)

		elif effect.context is not context:
			node = await recreate_in_context(effect, context)

		else:
			node = effect

		if callable(getattr(node, "start", None)):
			node.start()

		built.append(node)

	return built


@dataclasses.dataclass
class Acquisition:

	"""
	The result of ``acquire``: the producer as built synchronously and the task finishing it.

	``ready`` resolves to the final producer (which may differ from
	``producer`` after context reconciliation), or to ``None`` for an
	external output.
	"""

	producer: typing.Optional[cliptune.instruments.SoundProducer]
	kind: ProducerKind
	external: typing.Any
	ready: "asyncio.Task[typing.Any]"


def acquire (
	source: SoundSource,
	context: cliptune.engine.AudioContext,
	volume: typing.Optional[float] = None,
	effects: typing.Union[EffectSpec, typing.Sequence[EffectSpec], None] = None,
	label: str = ""
) -> Acquisition:

	"""
	Build the producer for ``source`` and start the asynchronous finishing task.

	Must be called with a running event loop. Effects with an external output
	are rejected immediately with ``ConfigurationError``.
	"""

	effect_list = _as_list(effects)
	external = source.delegate if isinstance(source, ExternalSource) else None

	if external is not None and effect_list:
		raise cliptune.errors.ConfigurationError("Effects cannot be used with external output")

	producer = build_producer(source, context)
	kind = producer_kind(producer, external)

	async def finish () -> typing.Any:

		try:
			return await _finish(producer, external, context, volume, effect_list)

		except asyncio.CancelledError:
			raise

		except Exception as e:
			if external is not None:
				message = f"{e} loading external output module of {label}"
			else:
				message = f"{e} loading sound source of {label}"
			raise cliptune.errors.AcquisitionError(message) from e

	ready = asyncio.get_running_loop().create_task(finish())

	return Acquisition(producer=producer, kind=kind, external=external, ready=ready)


async def _finish (
	producer: typing.Optional[cliptune.instruments.SoundProducer],
	external: typing.Any,
	context: cliptune.engine.AudioContext,
	volume: typing.Optional[float],
	effects: typing.List[EffectSpec]
) -> typing.Any:

	if external is not None:

		init = getattr(external, "init", None)

		if init is not None:
			await init(context)

		if volume is not None and callable(getattr(external, "set_volume", None)):
			external.set_volume(volume)

		return None

	assert producer is not None

	await wait_until_loaded(producer)

	if producer.context is not context:
		producer = await recreate_in_context(producer, context)

	if volume is not None:
		producer.volume = volume

	nodes = await build_effects(effects, context)

	if nodes:
		producer.chain(*nodes)
		nodes[-1].to_destination()
	else:
		producer.to_destination()

	return producer
