import random

import pytest

import grid_engine


@pytest.fixture
def rng():
    return random.Random(2048)


@pytest.fixture
def make_grid(rng):
    def _make(rows):
        return grid_engine.Grid.from_rows(rows, rng)
    return _make
