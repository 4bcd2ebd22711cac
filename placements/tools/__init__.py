"""Outbound integrations used by the engine."""
