"""Test helper utilities for notifier tests."""

from .fakes import FakeClock, FakeTransport, build_service, make_database

__all__ = ["FakeClock", "FakeTransport", "build_service", "make_database"]
