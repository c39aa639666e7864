import pytest

from walkgrid.geo import BoundingBox, GridPoint, grid_shape, make_grid

SF_BOUNDS = BoundingBox(north=37.83, south=37.67, east=-122.35, west=-122.525)


def test_grid_is_deterministic():
    grid1 = make_grid(SF_BOUNDS, 0.05)
    grid2 = make_grid(SF_BOUNDS, 0.05)
    assert grid1 == grid2


def test_grid_shape_sf_scenario():
    grid = make_grid(SF_BOUNDS, 0.05)
    assert grid_shape(SF_BOUNDS, 0.05) == (4, 4)
    assert len(grid) == 16


def test_grid_is_row_major_south_to_north_west_to_east():
    grid = make_grid(SF_BOUNDS, 0.05)
    assert grid[0] == GridPoint(lat=37.67, lng=-122.525)
    # First row shares the southmost latitude, longitudes increase.
    first_row = grid[:4]
    assert {p.lat for p in first_row} == {37.67}
    lngs = [p.lng for p in first_row]
    assert lngs == sorted(lngs)
    # Next row is one step north.
    assert grid[4].lat == pytest.approx(37.72)
    assert grid[4].lng == -122.525
    lats = [p.lat for p in grid[::4]]
    assert lats == sorted(lats)


def test_grid_includes_boundary_on_exact_step():
    bounds = BoundingBox(north=1.0, south=0.0, east=1.0, west=0.0)
    grid = make_grid(bounds, 0.5)
    assert len(grid) == 9
    assert grid[-1] == GridPoint(lat=1.0, lng=1.0)


def test_grid_uses_accumulated_steps():
    # 0.1 + 0.1 + 0.1 lands just above 0.3, so the 0.3 row and column drop out.
    bounds = BoundingBox(north=0.3, south=0.0, east=0.3, west=0.0)
    assert grid_shape(bounds, 0.1) == (3, 3)
    assert len(make_grid(bounds, 0.1)) == 9


def test_grid_points_are_immutable():
    point = make_grid(SF_BOUNDS, 0.05)[0]
    with pytest.raises(AttributeError):
        point.lat = 0.0


@pytest.mark.parametrize("step", [0, -0.01])
def test_grid_rejects_non_positive_step(step):
    with pytest.raises(ValueError):
        make_grid(SF_BOUNDS, step)


def test_grid_rejects_antimeridian_box():
    bounds = BoundingBox(north=10.0, south=0.0, east=-179.0, west=179.0)
    with pytest.raises(ValueError):
        make_grid(bounds, 0.5)


def test_grid_rejects_inverted_latitudes():
    bounds = BoundingBox(north=0.0, south=1.0, east=1.0, west=0.0)
    with pytest.raises(ValueError):
        make_grid(bounds, 0.5)
