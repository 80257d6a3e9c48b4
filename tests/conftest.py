import pytest

from synthetic import poisson_events


@pytest.fixture
def constant_events():
    return poisson_events(20.0, 0.0, 20.0, seed=11)
