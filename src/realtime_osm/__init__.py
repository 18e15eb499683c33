"""Real-time OpenStreetMap extracts, one clipped file per task polygon."""

__version__ = "0.3.0"
