"""Device-side agent helpers."""
