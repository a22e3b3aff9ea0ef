"""Core tracking logic - geometry, sanitizing, analysis and session lifecycle."""
