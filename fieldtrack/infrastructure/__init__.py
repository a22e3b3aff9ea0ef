"""Infrastructure layer - routing services and persistence."""
