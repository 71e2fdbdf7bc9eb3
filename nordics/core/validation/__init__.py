"""Input validation for caller-supplied identifiers."""
