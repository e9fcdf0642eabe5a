"""
Reveille - personal alarm clock client

Root package for the Reveille alarm clock. It holds the shared helpers used by
the console client and the alarm state machine.

Core modules:
- audio: Tone synthesis and sample playback through system players
- sound_library: Custom alarm sound storage and resolution
- datetime_utils: Clock helpers (time-of-day parsing, weekday indexes)
- clock: Alarm scheduling, playback fallback chain and lifecycle service
"""

__version__ = "0.4.2"
