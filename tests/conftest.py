import matplotlib

matplotlib.use("Agg")

import pytest

from geotrace.params import RenderParams


@pytest.fixture
def fast_params():
    """Small, coarse-stepped scene that traces in well under a second per tile."""
    return RenderParams(
        resolution=8,
        tile_size=4,
        field_of_view=40.0,
        step_size=0.5,
        max_steps=2000,
        escape_radius=60.0,
    )
