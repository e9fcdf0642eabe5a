"""
Alarm clock core: scheduling, playback and alarm lifecycle

This package provides the client side of the Reveille alarm clock:

- Scheduler: per-second evaluation of alarm repeat rules (once, daily, weekly)
- Playback: ordered fallback chain of sound strategies with guaranteed teardown
- Alarm service: trigger, stop and snooze state machine plus add/edit/toggle/delete
- Persistence: REST repository with a local JSON cache for offline operation
- Console: command processing and alert surfaces for the terminal client
"""
