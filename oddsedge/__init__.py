"""Quality-gated sports probability pipeline."""

__version__ = "0.1.0"
