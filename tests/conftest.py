"""Shared test fixtures."""

from collections.abc import Iterator

import pytest

from cronpost.cli.output import set_json_output


@pytest.fixture(autouse=True)
def _reset_json_output() -> Iterator[None]:
    """Reset the module-level --json flag so it cannot leak between tests."""
    yield
    set_json_output(False)
