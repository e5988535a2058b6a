"""Shared ranking and telemetry helpers."""
