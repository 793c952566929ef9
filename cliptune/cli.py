"""Command line: render a riff, a chord progression or an arpeggio to a MIDI file.

```
python -m cliptune riff C3 phrygian x-xRx_RR 8n --style AABC --sizzle sin 2 --outfile riff.mid
python -m cliptune chord C3 major xxxx 1m 1645 --sizzle cos 1
python -m cliptune chord C3 major xxxx 1m CM-FM-Am-GM
python -m cliptune arp C3 major xxxx 4n 1736 --order 2143
```
"""

import argparse
import asyncio
import logging
import os
import random
import re
import sys
import typing

import yaml

import cliptune.arp
import cliptune.clip
import cliptune.constants
import cliptune.errors
import cliptune.midi
import cliptune.pattern
import cliptune.progression
import cliptune.theory


logger = logging.getLogger(__name__)

COMMANDS = ("riff", "chord", "arp")

WriteMidi = typing.Callable[[typing.List[cliptune.midi.NoteObject], str, typing.Optional[float]], typing.Any]
Output = typing.Callable[[str], typing.Any]

# Keys a config file may set; command line options override them.
CONFIG_KEYS = ("bpm", "outfile", "subdiv", "amp", "accent_low")

_ROMAN_PROGRESSION = re.compile(r"^[ivIV°+7\s,]+$")
_DIGIT_PROGRESSION = re.compile(r"^[1-7]+$")


class CliError (cliptune.errors.CliptuneError):
	pass


class _Parser (argparse.ArgumentParser):

	"""Raises instead of printing usage and exiting, so ``run_cli`` can report errors itself."""

	def error (self, message: str) -> typing.NoReturn:

		raise CliError(message)


def build_parser () -> argparse.ArgumentParser:

	parser = _Parser(
		prog = "cliptune",
		description = "Render a riff, chord progression or arpeggio to a MIDI file.",
		epilog = (
			"riff <root> <mode> <pattern> [subdiv]\n"
			"chord <root> <mode> <pattern> [subdiv] <progression|random>\n"
			"arp <root> <mode> <pattern> [subdiv] <progression|random>\n\n"
			"A progression is a string of scale degrees (1645), roman numerals (I,IV,v,vi),\n"
			"chord names joined by '-' (CM-FM-Am-GM) or 'random'. Patterns may be repeated\n"
			"with 3(x-), (x-)3 or x-.repeat(3). Put -- before the positionals when a\n"
			"pattern starts with -."
		),
		formatter_class = argparse.RawDescriptionHelpFormatter,
		add_help = False,
	)

	parser.add_argument("command", choices=COMMANDS)
	parser.add_argument("args", nargs="*")
	parser.add_argument("--outfile", help="Output MIDI filename (default: music.mid)")
	parser.add_argument("--bpm", type=float, help="Tempo in BPM")
	parser.add_argument("--subdiv", help="Note subdivision, e.g. 4n or 1m")
	parser.add_argument("--sizzle", nargs="*", metavar="STYLE_OR_REPS", help="Sizzle style (sin|cos|rampUp|rampDown) and optional repetitions")
	parser.add_argument("--sizzle-reps", type=int, help="Repetitions for sizzle")
	parser.add_argument("--amp", type=int, help="Maximum note level (0-127)")
	parser.add_argument("--accent", help="Accent pattern of x and -")
	parser.add_argument("--accent-low", type=int, help="Level of unaccented notes (0-127)")
	parser.add_argument("--count", type=int, help="Arp note count, 2-8 (arp only)")
	parser.add_argument("--order", help="Arp order digits, one-based unless they contain 0 (arp only)")
	parser.add_argument("--style", help="Riff sections as letters, e.g. AABC (riff only)")
	parser.add_argument("--fit-pattern", dest="fit_pattern", action="store_true", default=True, help="Repeat the pattern until it consumes every note (default)")
	parser.add_argument("--no-fit-pattern", dest="fit_pattern", action="store_false", help="Play the pattern once as given")
	parser.add_argument("--seed", type=int, help="Seed for random choices")
	parser.add_argument("--config", help="YAML file with defaults for bpm, outfile, subdiv, amp and accent_low")

	return parser


def load_config (config_path: str) -> typing.Dict[str, typing.Any]:

	"""
	Load CLI defaults from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, 'r') as f:
		config = yaml.safe_load(f) or {}

	if not isinstance(config, dict):
		raise CliError(f"Config file {config_path} must hold a mapping")

	unknown = sorted(set(config) - set(CONFIG_KEYS))

	if unknown:
		logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

	return {key: config[key] for key in CONFIG_KEYS if key in config}


def expand_pattern_syntax (pattern: str) -> str:

	"""
	Expand the repeat shorthands ``'x-'.repeat(3)``, ``x-.repeat(3)``, ``3(x-)`` and ``(x-)3``.
	"""

	quoted = re.match(r"^(['\"])(.+)\1\.repeat\((\d+)\)$", pattern)

	if quoted:
		return quoted.group(2) * int(quoted.group(3))

	unquoted = re.match(r"^(.+)\.repeat\((\d+)\)$", pattern)

	if unquoted:
		return unquoted.group(1) * int(unquoted.group(2))

	prefix = re.match(r"^(\d+)\((.+)\)$", pattern)

	if prefix:
		return prefix.group(2) * int(prefix.group(1))

	suffix = re.match(r"^\((.+)\)(\d+)$", pattern)

	if suffix:
		return suffix.group(1) * int(suffix.group(2))

	return pattern


def fit_pattern_to_note_count (pattern: str, note_count: int) -> str:

	"""Repeat ``pattern`` until it has at least ``note_count`` note steps."""

	steps = cliptune.pattern.count_note_steps(pattern)

	if not steps or steps >= note_count:
		return pattern

	return pattern * -(-note_count // steps)


def resolve_pattern (raw_pattern: str, note_count: int, fit_pattern: bool = True) -> str:

	expanded = expand_pattern_syntax(raw_pattern)

	if fit_pattern:
		return fit_pattern_to_note_count(expanded, note_count)

	return expanded


def normalize_arp_order (order: str) -> str:

	"""
	Convert a one-based order (``"2143"``) to the zero-based digits ``arp`` expects.

	Orders that contain a ``0`` are taken to be zero-based already.
	"""

	if not re.match(r"^\d+$", order):
		raise CliError("Invalid value for --order")

	if "0" in order:
		return order

	return "".join(str(int(digit) - 1) for digit in order)


def parse_progression (root: str, mode: str, text: str, rng: typing.Optional[random.Random] = None) -> str:

	"""
	Chord names (space separated) for a progression argument.

	Accepts ``random``, scale-degree digits, comma or space separated roman
	numerals, or chord names joined by ``-``.
	"""

	key = f"{root} {mode}"

	if text == "random":
		scale_type = "minor" if mode in ("minor", "m") else "major"
		numerals = cliptune.progression.progression(scale_type, 4, rng=rng)
		return cliptune.progression.chords_by_progression(key, " ".join(numerals))

	if _DIGIT_PROGRESSION.match(text):

		degrees = cliptune.progression.chord_degrees(mode.lower())

		if not degrees:
			raise CliError(f"Unsupported mode {mode!r} for progression digits")

		numerals = [degrees[int(digit) - 1] for digit in text]

		return cliptune.progression.chords_by_progression(key, " ".join(numerals))

	if _ROMAN_PROGRESSION.match(text):
		return cliptune.progression.chords_by_progression(key, re.sub(r"\s*,+\s*", " ", text).strip())

	return text.replace("-", " ")


def _sizzle_options (values: typing.Optional[typing.List[str]]) -> typing.Dict[str, typing.Any]:

	if values is None:
		return {}

	if len(values) > 2:
		raise CliError(f"--sizzle takes at most a style and a repetition count, got {' '.join(values)}")

	if not values:
		return {"sizzle": True}

	if values[0].isdigit():
		if len(values) > 1:
			raise CliError(f"Unexpected value after --sizzle {values[0]}: {values[1]}")
		return {"sizzle": True, "sizzle_reps": int(values[0])}

	options: typing.Dict[str, typing.Any] = {"sizzle": values[0]}

	if len(values) == 2:

		if not values[1].isdigit():
			raise CliError(f"Invalid sizzle repetitions {values[1]!r}")

		options["sizzle_reps"] = int(values[1])

	return options


def _clip_options (options: argparse.Namespace, settings: typing.Dict[str, typing.Any]) -> typing.Dict[str, typing.Any]:

	"""Options shared by every command; ``None`` values fall back to the clip defaults."""

	params: typing.Dict[str, typing.Any] = {
		"amp": options.amp if options.amp is not None else settings.get("amp"),
		"accent": options.accent,
		"accent_low": options.accent_low if options.accent_low is not None else settings.get("accent_low"),
	}

	params.update(_sizzle_options(options.sizzle))

	if options.sizzle_reps is not None:
		params["sizzle_reps"] = options.sizzle_reps

	return params


def _split_positionals (command: str, args: typing.List[str]) -> typing.Tuple[typing.List[str], typing.Optional[str], typing.Optional[str]]:

	"""``(root, mode, pattern)``, the positional subdivision and the progression."""

	if command == "riff":

		if len(args) < 3 or len(args) > 4:
			raise CliError("riff requires: <root> <mode> <pattern> [subdiv]")

		return args[:3], (args[3] if len(args) == 4 else None), None

	if len(args) < 4 or len(args) > 5:
		raise CliError(f"{command} requires: <root> <mode> <pattern> [subdiv] <progression|random>")

	if len(args) == 4:
		return args[:3], None, args[3]

	return args[:3], args[3], args[4]


async def render_notes (
	params: typing.Dict[str, typing.Any],
	bpm: float,
	rng: typing.Optional[random.Random] = None
) -> typing.List[cliptune.midi.NoteObject]:

	"""
	Render one pass of the clip's pattern and return it as note objects.
	"""

	subdiv = params.get("subdiv") or cliptune.constants.DEFAULT_SUBDIV
	duration = cliptune.pattern.total_pattern_duration(params["pattern"], subdiv, bpm)
	rendered = await cliptune.clip.render_clip(params, bpm=bpm, rng=rng, duration=duration)

	return rendered.to_notes()


def _motif_note (riff_scale: typing.List[str], letter: str) -> str:

	idx = ord(letter) - ord("A")

	if idx < 0:
		return riff_scale[0]

	return riff_scale[idx % len(riff_scale)]


async def make_riff (options: argparse.Namespace, settings: typing.Dict[str, typing.Any], bpm: float, rng: random.Random) -> typing.List[cliptune.midi.NoteObject]:

	"""
	A riff over the scale of ``<root> <mode>``.

	With ``--style`` each letter is a section whose main note is that degree
	of the scale (``A`` is the root). A section is rendered once per letter,
	random steps included, and repeated wherever the letter comes back.
	"""

	(root, mode, pattern), positional_subdiv, _ = _split_positionals("riff", options.args)

	subdiv = options.subdiv or positional_subdiv or settings.get("subdiv")
	riff_scale = cliptune.theory.scale(f"{root} {mode}")
	base = _clip_options(options, settings)

	if not options.style:
		params = {**base, "notes": riff_scale, "random_notes": riff_scale, "subdiv": subdiv, "pattern": resolve_pattern(pattern, len(riff_scale), options.fit_pattern)}
		return await render_notes(params, bpm, rng)

	sections: typing.Dict[str, typing.List[cliptune.midi.NoteObject]] = {}
	notes: typing.List[cliptune.midi.NoteObject] = []

	for letter in options.style.upper():

		if letter not in sections:
			params = {**base, "notes": [_motif_note(riff_scale, letter)], "random_notes": riff_scale, "subdiv": subdiv, "pattern": resolve_pattern(pattern, 1, options.fit_pattern)}
			sections[letter] = await render_notes(params, bpm, rng)

		notes.extend(sections[letter])

	return notes


async def make_chord (options: argparse.Namespace, settings: typing.Dict[str, typing.Any], bpm: float, rng: random.Random) -> typing.List[cliptune.midi.NoteObject]:

	(root, mode, pattern), positional_subdiv, progression_text = _split_positionals("chord", options.args)

	assert progression_text is not None

	chords = parse_progression(root, mode, progression_text, rng)

	params = {
		**_clip_options(options, settings),
		"notes": chords,
		"subdiv": options.subdiv or positional_subdiv or settings.get("subdiv"),
		"pattern": resolve_pattern(pattern, len(chords.split()), options.fit_pattern),
	}

	return await render_notes(params, bpm, rng)


async def make_arp (options: argparse.Namespace, settings: typing.Dict[str, typing.Any], bpm: float, rng: random.Random) -> typing.List[cliptune.midi.NoteObject]:

	(root, mode, pattern), positional_subdiv, progression_text = _split_positionals("arp", options.args)

	assert progression_text is not None

	chords = parse_progression(root, mode, progression_text, rng)
	order = normalize_arp_order(options.order) if options.order else None
	arp_notes = cliptune.arp.arp(chords, count=options.count or 4, order=order)

	params = {
		**_clip_options(options, settings),
		"notes": arp_notes,
		"subdiv": options.subdiv or positional_subdiv or settings.get("subdiv"),
		"pattern": resolve_pattern(pattern, len(arp_notes), options.fit_pattern),
	}

	return await render_notes(params, bpm, rng)


BUILDERS = {
	"riff": make_riff,
	"chord": make_chord,
	"arp": make_arp,
}


def _print_error (message: str) -> None:

	print(message, file=sys.stderr)


def _normalise_argv (argv: typing.List[str]) -> typing.List[str]:

	"""Accept ``--riff`` (and friends) as the command."""

	if argv and argv[0].startswith("--") and argv[0][2:] in COMMANDS:
		return [argv[0][2:]] + argv[1:]

	return argv


def run_cli (
	argv: typing.Optional[typing.List[str]] = None,
	write_midi: typing.Optional[WriteMidi] = None,
	stdout: typing.Optional[Output] = None,
	stderr: typing.Optional[Output] = None
) -> int:

	"""
	Run the command line and return the exit code.

	``write_midi``, ``stdout`` and ``stderr`` replace the file writer and the
	console streams (used by the tests).
	"""

	if argv is None:
		argv = sys.argv[1:]

	if stdout is None:
		stdout = print

	if stderr is None:
		stderr = _print_error

	if write_midi is None:
		write_midi = cliptune.midi.write

	parser = build_parser()

	if not argv or "-h" in argv or "--help" in argv:
		stdout(parser.format_help())
		return 0

	try:
		options = parser.parse_intermixed_args(_normalise_argv(list(argv)))

		settings = load_config(options.config) if options.config else {}
		bpm = options.bpm if options.bpm is not None else float(settings.get("bpm", cliptune.constants.DEFAULT_BPM))
		outfile = options.outfile or settings.get("outfile") or "music.mid"
		rng = random.Random(options.seed)

		notes = asyncio.run(BUILDERS[options.command](options, settings, bpm, rng))

		write_midi(notes, outfile, bpm)

	except (cliptune.errors.CliptuneError, ValueError, OSError, yaml.YAMLError) as e:
		stderr(str(e))
		stderr("Run with --help for usage")
		return 1

	stdout(f"Generated {options.command} clip ({len(notes)} events) -> {outfile}")

	return 0


def main () -> None:

	logging.basicConfig(level=logging.WARNING)

	sys.exit(run_cli())
