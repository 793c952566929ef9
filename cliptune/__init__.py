"""
cliptune - pattern-driven clips, channels and sessions for MIDI.

A clip is a short pattern string such as ``"x-x[xx]R_"`` bound to a pool of
notes or chords. Each ``x`` plays the next note of the pool, ``R`` plays a
random one, ``-`` rests, ``_`` sustains the previous note and ``[...]``
squeezes several steps into one. Clips loop on a shared transport, either
in real time against a MIDI output port or offline, as fast as the work
allows, into a Standard MIDI File.

Building blocks:

- **Pattern compiler.** ``compile_pattern()`` turns the string into a
  nested tree; ``assign_durations()`` flattens it into timed steps with
  sustains merged; ``rendering_duration()`` gives the length after which
  pattern and note pool line up again.
- **Clips.** ``clip()`` builds a looping clip for a channel or a sample,
  or renders it in the background; ``render_clip()`` renders offline and
  returns the events, the recorded MIDI and note objects.
- **Channels and sessions.** A ``Channel`` acquires its sound source in
  the background (synth, sampler, player or external MIDI output, with an
  effect chain) while its clips are compiled right away. A ``Session``
  starts rows of clips together and plays song structures such as
  ``"0___1___"``.
- **Theory.** Scales, chords, roman-numeral progressions and arpeggios
  feed note pools: ``scale("C4 major")``, ``chord("CM_4")``,
  ``chords_by_progression("C4 major", "I IV V ii")``, ``cliptune.arp.arp("CM_4 FM_4")``.
- **Command line.** ``python -m cliptune riff|chord|arp ...`` writes a
  MIDI file.

Minimal example:

    ```python
    import asyncio
    import cliptune

    async def main ():
        rendered = await cliptune.render_clip({"pattern": "x-x[xx]", "notes": "C4 E4 G4"})
        rendered.save("clip.mid")

    asyncio.run(main())
    ```

Package-level exports: ``AudioContext``, ``Channel``, ``Session``,
``render_clip``, ``scale``, ``chord``, ``chords_by_progression`` and
``compile_pattern``. ``cliptune.clip.clip()``, ``cliptune.arp.arp()`` and
``cliptune.progression.progression()`` live in their modules.
"""

import cliptune.arp
import cliptune.channel
import cliptune.clip
import cliptune.engine
import cliptune.pattern
import cliptune.progression
import cliptune.session
import cliptune.theory


AudioContext = cliptune.engine.AudioContext
Channel = cliptune.channel.Channel
Session = cliptune.session.Session
render_clip = cliptune.clip.render_clip
scale = cliptune.theory.scale
chord = cliptune.theory.chord
chords_by_progression = cliptune.progression.chords_by_progression
compile_pattern = cliptune.pattern.compile_pattern
