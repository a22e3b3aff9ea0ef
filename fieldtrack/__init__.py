"""FieldTrack - GPS tracking and distance calculation engine."""

__version__ = "1.0.0"
