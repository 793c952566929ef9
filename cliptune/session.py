"""Sessions: several channels sharing one transport."""

import asyncio
import logging
import typing

import cliptune.channel
import cliptune.constants
import cliptune.engine
import cliptune.time_notation


logger = logging.getLogger(__name__)

SILENCE = "-"
CONTINUE = "_"


def unique_idx (channels: typing.Sequence[cliptune.channel.Channel], idx: typing.Any = None) -> typing.Any:

	"""
	``idx`` if it is set and free among ``channels``, else the first free integer from ``len(channels)``.
	"""

	if not channels:
		return idx or 0

	taken = [channel.idx for channel in channels]

	if not idx or idx in taken:

		new_idx = len(channels)

		while new_idx in taken:
			new_idx += 1

		return new_idx

	return idx


class Session:

	"""
	An ordered set of channels on a shared transport, like the rows and columns of a clip launcher.

	Example:
		```python
		session = Session([
			{"instrument": "PolySynth", "clips": [{"pattern": "x-x-", "notes": "C4"}]},
			{"instrument": "NoiseSynth", "clips": [{"pattern": "[xx]"}]},
		])

		await session.wait_loaded()
		session.start_row(0)
		session.start_transport()
		```
	"""

	def __init__ (
		self,
		channels: typing.Optional[typing.Sequence[typing.Dict[str, typing.Any]]] = None,
		context: typing.Optional[cliptune.engine.AudioContext] = None
	) -> None:

		self.context = context if context is not None else cliptune.engine.default_context()
		self._channels: typing.List[cliptune.channel.Channel] = []
		self._runner: typing.Optional["asyncio.Task[None]"] = None

		for i, params in enumerate(channels or []):
			params = dict(params)
			params["idx"] = unique_idx(self._channels, params.get("idx") or i)
			self._channels.append(self._build_channel(params))


	@property
	def channels (self) -> typing.List[cliptune.channel.Channel]:

		return self._channels


	@property
	def transport (self) -> cliptune.engine.Transport:

		return self.context.transport


	@property
	def failed_channels (self) -> typing.List[cliptune.channel.Channel]:

		"""Channels whose sound source or clips failed; the caller decides whether to go on without them."""

		return [channel for channel in self._channels if channel.has_failed is not None]


	def unique_idx (self, idx: typing.Any = None) -> typing.Any:

		return unique_idx(self._channels, idx)


	def create_channel (self, params: typing.Dict[str, typing.Any]) -> cliptune.channel.Channel:

		"""Add a channel; its ``idx`` is replaced if it is missing or already taken."""

		params = dict(params)
		params["idx"] = unique_idx(self._channels, params.get("idx"))

		channel = self._build_channel(params)
		self._channels.append(channel)

		return channel


	def _build_channel (self, params: typing.Dict[str, typing.Any]) -> cliptune.channel.Channel:

		params.setdefault("context", self.context)

		return cliptune.channel.Channel(**params)


	async def wait_loaded (self) -> typing.List[cliptune.channel.Channel]:

		"""
		Wait until every channel has finished acquiring its sound source. Returns the failed channels.
		"""

		await asyncio.gather(*(channel.wait_loaded() for channel in self._channels))

		failed = self.failed_channels

		for channel in failed:
			logger.warning(f"Channel {channel.label} failed: {channel.has_failed}")

		return failed


	def start_row (self, idx: int) -> None:

		"""Start clip ``idx`` on every channel at each channel's next aligned position."""

		for channel in self._channels:
			channel.start_clip(idx)


	def play (
		self,
		channel_patterns: typing.Sequence[typing.Dict[str, typing.Any]],
		clip_duration: cliptune.time_notation.TimeValue = cliptune.constants.DEFAULT_CLIP_DURATION
	) -> None:

		"""
		Schedule a song structure.

		Each entry of ``channel_patterns`` is ``{"channel_idx": ..., "pattern": "0___1___"}``.
		Every character of the pattern lasts ``clip_duration``: a digit plays
		that clip slot, ``-`` is silence and ``_`` keeps whatever is playing.
		Clips are only stopped and started where the character changes, and
		everything still playing is stopped at the end of the pattern.
		"""

		clip_seconds = self.transport.to_seconds(clip_duration)

		for entry in channel_patterns:

			channel_idx = entry["channel_idx"]
			channels = [channel for channel in self._channels if channel.idx == channel_idx]
			time = 0.0
			previous = SILENCE
			playing = SILENCE

			for char in entry["pattern"]:

				if char != previous and char != CONTINUE:
					for channel in channels:
						self._switch_clip(channel, playing, char, time)
					playing = char

				previous = char
				time += clip_seconds

			for channel in channels:
				self._switch_clip(channel, playing, SILENCE, time)

			logger.debug(f"Song structure {entry['pattern']!r} scheduled on channel {channel_idx}")


	def _switch_clip (self, channel: cliptune.channel.Channel, playing: str, char: str, time: float) -> None:

		if playing != SILENCE:
			channel.stop_clip(int(playing), time)

		if char != SILENCE:
			channel.start_clip(int(char), time)


	def set_transport_tempo (self, bpm: float) -> None:

		self.transport.set_bpm(bpm)


	def start_transport (self) -> "asyncio.Task[None]":

		"""
		Start the transport and drive it from a background task on the running loop.
		"""

		self.transport.start()

		if self._runner is None or self._runner.done():
			self._runner = asyncio.get_running_loop().create_task(self.transport.run())

		return self._runner


	def stop_transport (self, delete_events: bool = True) -> None:

		"""
		Stop the transport. With ``delete_events`` every scheduled callback is
		dropped as well and the clips go back to stopped, ready to be started again.
		"""

		self.transport.stop()

		if delete_events:
			self.transport.cancel()

			for channel in self._channels:
				channel.reset_clips()
