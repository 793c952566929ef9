"""MIDI level constants.

Level is the MIDI attack strength (0-127). ``amp`` is the upper bound of a
clip's levels and ``accent_low`` the lower bound used by accents and sizzles.
"""

DEFAULT_AMP = 100
DEFAULT_ACCENT_LOW = 70

MIN_VELOCITY = 0
MAX_VELOCITY = 127
