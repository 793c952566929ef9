import typing

import pytest

import cliptune.acquisition
import cliptune.engine
import cliptune.errors
import cliptune.instruments


class FakeExternal:

	"""External output module stub that records its lifecycle calls."""

	def __init__ (self, fail: bool = False) -> None:

		self.fail = fail
		self.context: typing.Optional[cliptune.engine.AudioContext] = None
		self.volume: typing.Optional[float] = None


	async def init (self, context: cliptune.engine.AudioContext) -> None:

		if self.fail:
			raise RuntimeError("port busy")

		self.context = context


	def set_volume (self, db: float) -> None:

		self.volume = db


# ---------------------------------------------------------------------------
# resolve_source
# ---------------------------------------------------------------------------

def test_resolve_synth_by_name_and_description () -> None:

	"""Synth names and {synth, preset} dicts both resolve to a SynthSource."""

	assert cliptune.acquisition.resolve_source(synth="PolySynth") == cliptune.acquisition.SynthSource(name="PolySynth")

	source = cliptune.acquisition.resolve_source(synth={"synth": "Synth", "preset": {"volume": -6}})

	assert source == cliptune.acquisition.SynthSource(name="Synth", preset={"volume": -6})


def test_resolve_synth_instance_is_deprecated (caplog: pytest.LogCaptureFixture) -> None:

	"""Passing an instance as synth still works and warns."""

	synth = cliptune.instruments.Synth()
	source = cliptune.acquisition.resolve_source(synth=synth)

	assert source.instance is synth
	assert "deprecated" in caplog.text


def test_resolve_rejects_synth_and_instrument () -> None:

	"""Only one of synth and instrument may be given."""

	with pytest.raises(cliptune.errors.ConfigurationError, match="Either synth or instrument can be provided, but not both."):
		cliptune.acquisition.resolve_source(synth="Synth", instrument=cliptune.instruments.Synth())


@pytest.mark.parametrize("sources", [
	{"sample": "kick.wav", "samples": {"C4": "c4.wav"}},
	{"instrument": "Synth", "sample": "kick.wav"},
	{"synth": "PolySynth", "external": object()},
	{"samples": {"C4": "c4.wav"}, "player": object()},
])
def test_resolve_rejects_several_sources (sources: typing.Dict[str, typing.Any]) -> None:

	"""Any two sound sources together are a configuration error."""

	with pytest.raises(cliptune.errors.ConfigurationError, match="Only one sound source can be provided"):
		cliptune.acquisition.resolve_source(**sources)


def test_resolve_sample_and_buffer_are_one_source () -> None:

	"""A buffer given alongside its sample url is still a single sample source."""

	buffer = cliptune.instruments.AudioBuffer(data=b"data")

	assert cliptune.acquisition.resolve_source(sample="kick.wav", buffer=buffer) == cliptune.acquisition.SampleSource(url="kick.wav")



def test_resolve_requires_a_source () -> None:

	"""No source at all is a configuration error."""

	with pytest.raises(cliptune.errors.ConfigurationError, match="One of required synth\\|instrument"):
		cliptune.acquisition.resolve_source()


def test_resolve_sample_variants () -> None:

	"""Sample urls, buffers, note maps, samplers, players and externals each map to their variant."""

	buffer = cliptune.instruments.AudioBuffer(data=b"x")
	sampler = cliptune.instruments.Sampler()
	player = cliptune.instruments.Player(buffer)
	external = FakeExternal()

	assert cliptune.acquisition.resolve_source(sample="kick.wav") == cliptune.acquisition.SampleSource(url="kick.wav")
	assert cliptune.acquisition.resolve_source(buffer=buffer) == cliptune.acquisition.SampleSource(buffer=buffer)
	assert cliptune.acquisition.resolve_source(samples={"C4": "c.wav"}, base_url="s/") == cliptune.acquisition.SamplesSource({"C4": "c.wav"}, "s/")
	assert cliptune.acquisition.resolve_source(sampler=sampler).sampler is sampler
	assert cliptune.acquisition.resolve_source(player=player).player is player
	assert cliptune.acquisition.resolve_source(external=external).delegate is external


def test_producer_kind () -> None:

	"""Producers are classified for the dispatcher."""

	kind = cliptune.acquisition.producer_kind
	kinds = cliptune.acquisition.ProducerKind

	assert kind(cliptune.instruments.PolySynth()) is kinds.POLY
	assert kind(cliptune.instruments.Sampler()) is kinds.POLY
	assert kind(cliptune.instruments.NoiseSynth()) is kinds.NOISE
	assert kind(cliptune.instruments.Synth()) is kinds.GENERIC
	assert kind(cliptune.instruments.Player(cliptune.instruments.AudioBuffer(data=b"x"))) is kinds.PLAYER
	assert kind(None, external=FakeExternal()) is kinds.EXTERNAL


# ---------------------------------------------------------------------------
# acquire
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_acquire_synth_connects_to_destination (offline_context: cliptune.engine.AudioContext) -> None:

	"""A registry synth is built at once and wired to the destination when ready."""

	source = cliptune.acquisition.resolve_source(synth="PolySynth")
	acquisition = cliptune.acquisition.acquire(source, offline_context, volume=-6)

	assert isinstance(acquisition.producer, cliptune.instruments.PolySynth)
	assert acquisition.kind is cliptune.acquisition.ProducerKind.POLY

	producer = await acquisition.ready

	assert producer is acquisition.producer
	assert producer.volume == -6
	assert producer.outputs == [offline_context.destination]


@pytest.mark.asyncio
async def test_acquire_wires_effect_chain (offline_context: cliptune.engine.AudioContext) -> None:

	"""Effects sit between the producer and the destination, in order, and are started."""

	source = cliptune.acquisition.resolve_source(synth="Synth")
	acquisition = cliptune.acquisition.acquire(source, offline_context, effects=["Transpose", "Echo"])

	producer = await acquisition.ready
	transpose = producer.outputs[0]
	echo = transpose.outputs[0]

	assert isinstance(transpose, cliptune.instruments.Transpose)
	assert isinstance(echo, cliptune.instruments.Echo)
	assert echo.started
	assert echo.outputs == [offline_context.destination]


@pytest.mark.asyncio
async def test_acquire_unknown_effect_fails_in_task (offline_context: cliptune.engine.AudioContext) -> None:

	"""Unknown effect names fail the acquisition with the channel label."""

	source = cliptune.acquisition.resolve_source(synth="Synth")
	acquisition = cliptune.acquisition.acquire(source, offline_context, effects="Reverb", label="channel idx 2, bass")

	with pytest.raises(cliptune.errors.AcquisitionError, match="loading sound source of channel idx 2, bass"):
		await acquisition.ready


def test_acquire_unknown_synth_is_immediate (offline_context: cliptune.engine.AudioContext) -> None:

	"""Unknown registry names are rejected synchronously."""

	with pytest.raises(cliptune.errors.ConfigurationError, match="Unknown synth"):
		cliptune.acquisition.acquire(cliptune.acquisition.SynthSource(name="Theremin"), offline_context)


@pytest.mark.asyncio
async def test_acquire_recreates_foreign_producer (offline_context: cliptune.engine.AudioContext) -> None:

	"""A producer bound to another context is rebuilt in the target context."""

	other = cliptune.engine.AudioContext.offline()
	instrument = cliptune.instruments.PolySynth(context=other, channel=4, max_polyphony=8)

	acquisition = cliptune.acquisition.acquire(cliptune.acquisition.InstrumentSource(instance=instrument), offline_context)
	producer = await acquisition.ready

	assert producer is not instrument
	assert producer.context is offline_context
	assert producer.channel == 4
	assert producer.max_polyphony == 8


@pytest.mark.asyncio
async def test_acquire_missing_sample_fails (offline_context: cliptune.engine.AudioContext, tmp_path: typing.Any) -> None:

	"""A sample that cannot be read fails the acquisition."""

	source = cliptune.acquisition.resolve_source(sample=str(tmp_path / "missing.wav"))
	acquisition = cliptune.acquisition.acquire(source, offline_context, label="channel idx 0, drums")

	with pytest.raises(cliptune.errors.AcquisitionError, match="channel idx 0, drums"):
		await acquisition.ready


@pytest.mark.asyncio
async def test_acquire_sample_from_file (offline_context: cliptune.engine.AudioContext, tmp_path: typing.Any) -> None:

	"""A readable sample becomes a loaded player."""

	path = tmp_path / "kick.wav"
	path.write_bytes(b"kick")

	acquisition = cliptune.acquisition.acquire(cliptune.acquisition.resolve_source(sample=str(path)), offline_context)
	producer = await acquisition.ready

	assert isinstance(producer, cliptune.instruments.Player)
	assert producer.loaded


@pytest.mark.asyncio
async def test_acquire_external_output (offline_context: cliptune.engine.AudioContext) -> None:

	"""External outputs are initialised with the context and given the volume."""

	external = FakeExternal()
	acquisition = cliptune.acquisition.acquire(cliptune.acquisition.ExternalSource(external), offline_context, volume=-3)

	assert acquisition.producer is None
	assert await acquisition.ready is None
	assert external.context is offline_context
	assert external.volume == -3


@pytest.mark.asyncio
async def test_acquire_external_failure_names_output (offline_context: cliptune.engine.AudioContext) -> None:

	"""External init failures mention the external output module."""

	acquisition = cliptune.acquisition.acquire(cliptune.acquisition.ExternalSource(FakeExternal(fail=True)), offline_context, label="channel idx 1, ext")

	with pytest.raises(cliptune.errors.AcquisitionError, match="port busy loading external output module of channel idx 1, ext"):
		await acquisition.ready


@pytest.mark.asyncio
async def test_external_output_rejects_effects (offline_context: cliptune.engine.AudioContext) -> None:

	"""Effects cannot be combined with an external output."""

	with pytest.raises(cliptune.errors.ConfigurationError, match="Effects cannot be used with external output"):
		cliptune.acquisition.acquire(cliptune.acquisition.ExternalSource(FakeExternal()), offline_context, effects=["Echo"])


@pytest.mark.asyncio
async def test_wait_until_loaded_rejects_unknown_objects () -> None:

	"""Objects without a readiness primitive are not assumed ready."""

	with pytest.raises(cliptune.errors.AcquisitionError, match="no readiness primitive"):
		await cliptune.acquisition.wait_until_loaded(object())
