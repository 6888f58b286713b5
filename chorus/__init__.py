"""chorus - multi-model conversation orchestration engine."""

__version__ = "0.1.0"
