"""Tests for config loading and fence definitions."""

from pathlib import Path

import jsonschema
import orjson
import pytest

from nextbus_geofence.config import AppConfig, load_config
from nextbus_geofence.exceptions import ConfigError
from nextbus_geofence.fences import load_fences

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


def _write(tmp_path: Path, name: str, data) -> Path:
    path = tmp_path / name
    path.write_bytes(orjson.dumps(data))
    return path


def test_example_config_loads(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NEXTBUS_GEOFENCE_MONGO_URI", raising=False)
    cfg = load_config(CONFIG_DIR / "config.json")

    assert isinstance(cfg, AppConfig)
    assert cfg.feed.agency == "ttc"
    assert cfg.feed.route == "65"
    assert cfg.schedule.ingest_interval_seconds == 15
    assert cfg.schedule.alert_interval_seconds == 5
    assert cfg.store.uri == "mongodb://localhost:27017"


def test_interpolation_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path, "c.json", {
        "feed": {"agency": "${AGENCY}"},
        "store": {"uri": "${MONGO:-mongodb://fallback}"},
        "fences": {"path": "f.json"},
    })
    monkeypatch.setenv("AGENCY", "sf-muni")
    monkeypatch.delenv("MONGO", raising=False)

    cfg = load_config(path, overrides={"AGENCY": "ttc"})
    assert cfg.feed.agency == "ttc"
    assert cfg.store.uri == "mongodb://fallback"

    cfg = load_config(path)
    assert cfg.feed.agency == "sf-muni"


def test_missing_required_variable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
    path = _write(tmp_path, "c.json", {"feed": {"agency": "${NOT_SET_ANYWHERE}"}})
    with pytest.raises(ValueError):
        load_config(path)


def test_defaults_fill_missing_sections(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, "c.json", {}))
    assert cfg.feed.route is None
    assert cfg.store.hits_collection == "hits"
    assert cfg.schedule.max_overlapping_runs == 3


def test_schema_rejects_bad_interval(tmp_path: Path) -> None:
    path = _write(tmp_path, "c.json", {"schedule": {"alert_interval_seconds": 0}})
    with pytest.raises(jsonschema.ValidationError):
        load_config(path)


def test_example_fences_load() -> None:
    fences = load_fences(CONFIG_DIR / "fences.json")
    assert [f.id for f in fences] == ["union-station", "queens-park"]
    for fence in fences:
        assert fence.polygon[0] == fence.polygon[-1]


def test_duplicate_fence_ids(tmp_path: Path) -> None:
    ring = [[0, 0], [0, 1], [1, 1]]
    path = _write(tmp_path, "f.json", [
        {"id": "a", "name": "A", "region": 1, "polygon": ring},
        {"id": "a", "name": "B", "region": 1, "polygon": ring},
    ])
    with pytest.raises(ConfigError):
        load_fences(path)


@pytest.mark.parametrize(
    "entry",
    [
        {"id": "a", "name": "A", "region": 1, "polygon": [[0, 0], [0, 1]]},
        {"id": "a", "name": "A", "region": 1, "polygon": [[95, 0], [0, 1], [1, 1]]},
        {"id": "a", "name": "A", "polygon": [[0, 0], [0, 1], [1, 1]]},
        {"id": "a", "name": "A", "region": 1, "polygon": [[0, 0], [1, 1], [0, 0]]},
    ],
)
def test_invalid_fences(tmp_path: Path, entry: dict) -> None:
    with pytest.raises(ConfigError):
        load_fences(_write(tmp_path, "f.json", [entry]))


def test_unreadable_fences(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_fences(tmp_path / "missing.json")


def test_schemas_ship_inside_package() -> None:
    from nextbus_geofence import config, fences

    assert config._SCHEMA_PATH.is_file()
    assert fences._SCHEMA_PATH.is_file()
    assert config._SCHEMA_PATH.parent.parent == Path(config.__file__).resolve().parent


@pytest.mark.parametrize(
    "entry",
    [
        {"id": "a", "name": "A", "region": 1},
        {"name": "A", "region": 1, "polygon": [[0, 0], [0, 1], [1, 1]]},
        {"id": "a", "name": "A", "region": 1, "polygon": "0,0 0,1 1,1"},
        ["a", "A", 1],
    ],
)
def test_malformed_fences_without_schema(tmp_path: Path, entry) -> None:
    """Structural checks hold even when no schema file is available."""
    with pytest.raises(ConfigError):
        load_fences(_write(tmp_path, "f.json", [entry]), schema_path=tmp_path / "none.json")
