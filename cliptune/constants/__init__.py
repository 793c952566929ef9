"""Constants for cliptune.

- ``cliptune.constants`` - transport resolution and defaults
- ``cliptune.constants.velocity`` - MIDI level constants used by clips

All transport positions are measured in **ticks**. A quarter note is
``TICKS_PER_QUARTER`` ticks and the meter is fixed at 4/4.
"""

TICKS_PER_QUARTER = 192
BEATS_PER_MEASURE = 4
TICKS_PER_MEASURE = TICKS_PER_QUARTER * BEATS_PER_MEASURE

DEFAULT_BPM = 120.0

# Clip defaults
DEFAULT_SUBDIV = "4n"
DEFAULT_DUR = "8n"
DEFAULT_ALIGN = "1m"
DEFAULT_ALIGN_OFFSET = "0"

# Session default slot length for song structures (4 bars)
DEFAULT_CLIP_DURATION = "4:0:0"

# MIDI file resolution used by the encoder
MIDI_FILE_TICKS_PER_BEAT = 480
