"""Task model, store and operator-facing task management."""
