"""Property-based tests; every test here is marked ``property``."""

from pathlib import Path

import pytest
from hypothesis import HealthCheck, settings

settings.register_profile(
    "zminit",
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile("zminit")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if Path(item.path).is_relative_to(Path(__file__).parent):
            item.add_marker(pytest.mark.property)
