"""Context orchestration and memory engine for the Bizzi business assistant."""

__version__ = "0.1.0"
