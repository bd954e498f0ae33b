"""Unit tests; every test here is marked ``unit``."""

from pathlib import Path

import pytest

UNIT_ROOT = Path(__file__).parent


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if Path(item.path).is_relative_to(UNIT_ROOT):
            item.add_marker(pytest.mark.unit)
