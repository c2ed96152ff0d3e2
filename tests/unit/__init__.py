"""Unit tests package for the spawner service.

This package contains fast, fully-mocked unit tests for testing individual
components in isolation. No test talks to a cloud provider: sessions and SDK
clients are replaced with mocks from ``tests.helpers``.
"""
