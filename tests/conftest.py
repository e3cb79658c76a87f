import pytest


@pytest.fixture
def anyio_backend():
    # The cart dispatch runner schedules asyncio tasks
    return "asyncio"
