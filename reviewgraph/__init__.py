"""ReviewGraph: symbol index, breaking-change, impact and duplicate analysis for pull requests."""

__version__ = "0.1.0"
