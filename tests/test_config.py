import json

import pytest

from walkgrid import config
from walkgrid.config import ConfigError, PipelineConfig, config_from_dict, load_pipeline_config
from walkgrid.geo import BoundingBox
from walkgrid.http import RetryPolicy


def test_defaults_validate():
    cfg = PipelineConfig()
    cfg.validate()
    assert cfg.flush_every == 25
    assert cfg.max_points == 4000
    assert cfg.categories == config.AMENITY_CATEGORIES
    assert cfg.retry_policy == RetryPolicy(max_retries=6, base_delay=0.5, max_delay=30.0)


@pytest.mark.parametrize(
    "overrides",
    [
        {"step_deg": 0},
        {"step_deg": -0.1},
        {"max_points": -1},
        {"flush_every": 0},
        {"flush_pause_seconds": -1},
        {"categories": ()},
        {"categories": ("park", "park")},
        {"retry_policy": RetryPolicy(max_retries=-1)},
        {"retry_policy": RetryPolicy(base_delay=-1.0)},
        {"retry_policy": RetryPolicy(max_delay=-0.5)},
        {"retry_policy": RetryPolicy(max_delay=float("inf"))},
        {"bounds": BoundingBox(north=1.0, south=2.0, east=1.0, west=0.0)},
        {"bounds": BoundingBox(north=2.0, south=1.0, east=-179.5, west=179.5)},
    ],
)
def test_invalid_configs_raise(overrides):
    with pytest.raises(ConfigError):
        PipelineConfig(**overrides).validate()


def test_with_overrides_skips_none():
    cfg = PipelineConfig().with_overrides(step_deg=0.01, max_points=None, output_path=None)
    assert cfg.step_deg == 0.01
    assert cfg.max_points == config.MAX_POINTS
    assert cfg.output_path == config.OUTPUT_PATH


def test_load_missing_config_returns_defaults(tmp_path):
    assert load_pipeline_config(str(tmp_path / "missing.json")) == PipelineConfig()


def test_load_config_file(tmp_path):
    path = tmp_path / "walkgrid_config.json"
    path.write_text(
        json.dumps(
            {
                "bounds": {"north": 2, "south": 1, "east": 4, "west": 3},
                "step_deg": 0.25,
                "max_points": 10,
                "flush_every": 5,
                "categories": ["park", "school"],
                "retry_policy": {"max_retries": 2},
                "output_path": "out/grid.json",
                "ignored": True,
            }
        ),
        encoding="utf-8",
    )

    cfg = load_pipeline_config(str(path))

    assert cfg.bounds == BoundingBox(north=2.0, south=1.0, east=4.0, west=3.0)
    assert cfg.step_deg == 0.25
    assert cfg.max_points == 10
    assert cfg.flush_every == 5
    assert cfg.categories == ("park", "school")
    assert cfg.retry_policy == RetryPolicy(max_retries=2, base_delay=0.5, max_delay=30.0)
    assert cfg.output_path == "out/grid.json"


def test_malformed_config_file_raises(tmp_path):
    path = tmp_path / "walkgrid_config.json"
    path.write_text("{oops", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_pipeline_config(str(path))


@pytest.mark.parametrize(
    "data",
    [
        {"bounds": {"north": 1}},
        {"step_deg": "wide"},
        {"bounds": {"north": 0, "south": 1, "east": 1, "west": 0}},
        {"categories": "park"},
        {"categories": ["park", 3]},
        {"categories": []},
        {"retry_policy": {"base_delay": -2}},
    ],
)
def test_config_from_dict_rejects_bad_values(data):
    with pytest.raises(ConfigError):
        config_from_dict(data)
