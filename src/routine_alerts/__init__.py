"""
Routine alerts: weather-risk alerts for outdoor tasks.

Subsystems:
- tasks/: task models and the SQLite store (tasks, device tokens, dedup markers)
- weather/: forecast models and the OpenWeather client
- alerts/: risk classifier, push dispatcher and the periodic alert scheduler
- cli/: composition root and command line entrypoint
"""

__version__ = "0.1.0"
