"""Student achievement tracking with cross-store reference repair."""
