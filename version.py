"""Version information for PondControl."""

__version__ = "1.0.0"
__version_info__ = (1, 0, 0)

# Release notes for this version
RELEASE_NOTES = """
PondControl v1.0.0

First release of the pond device-control engine.

Key Features:
- Weekly on/off schedules evaluated in the pond's local timezone
- Once-per-day firing with a midnight reset
- Global auto mode that suppresses schedule-driven writes
- Optimistic device updates with rollback on failed writes
- Persistent offline queue replayed when connectivity returns
- Firebase Realtime Database REST backend
- Configuration via YAML and environment variables
"""
