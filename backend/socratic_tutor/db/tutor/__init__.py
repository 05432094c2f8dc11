"""Per-user tutoring tables."""
