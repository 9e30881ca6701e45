"""Process-level plumbing: logging and telemetry."""
