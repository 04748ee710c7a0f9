"""Shared fixtures."""

from __future__ import annotations

import pytest

from tests.fakes import ManualScheduler


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
