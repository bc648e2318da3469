"""Media scheduler: time-triggered play/pause/stop actions for a media player."""
__version__ = "0.1.0"
