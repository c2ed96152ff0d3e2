"""Spawner service test suite."""
