import logging
import typing

import mido


logger = logging.getLogger(__name__)


def note_message (note: int, velocity: int, channel: int = 0, on: bool = True) -> mido.Message:

	"""Build a note_on (or note_off) message with the velocity clamped to 0-127."""

	velocity = max(0, min(127, int(round(velocity))))

	if on:
		return mido.Message("note_on", channel=channel, note=note, velocity=velocity)

	return mido.Message("note_off", channel=channel, note=note, velocity=0)


def select_output_device (device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Select and open a MIDI output port.

	If ``device_name`` is given, only that port is opened. Otherwise the first
	available port is used. Returns ``(name, port)`` or ``(None, None)`` when
	no port could be opened; the failure is logged rather than raised so that
	playback can continue (for example while only recording).
	"""

	try:
		outputs = mido.get_output_names()

	except Exception as e:
		logger.error(f"Could not list MIDI outputs: {e}")
		return None, None

	logger.debug(f"Available MIDI outputs: {outputs}")

	if not outputs:
		logger.error("No MIDI output devices found.")
		return None, None

	if device_name is not None and device_name not in outputs:
		logger.error(f"MIDI output device '{device_name}' not found. Available devices: {outputs}")
		return None, None

	selected_name = device_name if device_name is not None else outputs[0]

	try:
		midi_out = mido.open_output(selected_name)

	except Exception as e:
		logger.error(f"Failed to open MIDI output '{selected_name}': {e}")
		return None, None

	logger.info(f"Opened MIDI output: {selected_name}")

	return selected_name, midi_out
