"""Availability and booking scheduling engine."""
