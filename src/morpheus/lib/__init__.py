"""Configuration, logging, telemetry and completion-service plumbing."""
