"""
Storage abstractions for the LED-Sync runtime.

Includes:
- StateLog: append-only JSON Lines log of LED state snapshots, shared
  across processes through advisory file locks
"""
