import pytest

from projector.app.config import TrackingSettings
from projector.app.registry import TrackedObjectRegistry
from projector.app.state import Detection, ObjectType

from conftest import det


def make_registry(**kwargs) -> TrackedObjectRegistry:
    kwargs.setdefault("smoothing_alpha", 0.2)
    kwargs.setdefault("evict_timeout", 2.0)
    return TrackedObjectRegistry(**kwargs)


def test_new_ids_start_at_raw_position():
    registry = make_registry()
    registry.update([det("a", 0.1, 0.2), det("b", 0.7, 0.9, "hand")], now=0.0)
    registry.update([det("c", 0.33, 0.44, "coin")], now=0.1)

    snap = registry.snapshot()
    assert (snap["a"].x, snap["a"].y) == (0.1, 0.2)
    assert (snap["b"].x, snap["b"].y) == (0.7, 0.9)
    assert (snap["c"].x, snap["c"].y) == (0.33, 0.44)
    assert snap["b"].type is ObjectType.HAND
    assert snap["c"].type is ObjectType.COIN


def test_stationary_object_converges_monotonically():
    registry = make_registry(smoothing_alpha=0.2)
    registry.update([det("a", 0.2, 0.8)], now=0.0)

    distances = []
    for i in range(1, 80):
        registry.update([det("a", 0.8, 0.2)], now=i * 0.05)
        obj = registry.snapshot()["a"]
        # Never overshoots the target
        assert obj.x <= 0.8
        assert obj.y >= 0.2
        distances.append(abs(obj.x - 0.8) + abs(obj.y - 0.2))

    assert all(later < earlier for earlier, later in zip(distances, distances[1:]))
    assert distances[-1] < 1e-6


def test_smoothing_step_uses_alpha():
    registry = make_registry(smoothing_alpha=0.25)
    registry.update([det("a", 0.0, 0.0)], now=0.0)
    registry.update([det("a", 1.0, 0.5, confidence=0.4)], now=0.1)

    obj = registry.snapshot()["a"]
    assert obj.x == pytest.approx(0.25)
    assert obj.y == pytest.approx(0.125)
    assert obj.confidence == pytest.approx(0.4)
    assert obj.last_seen_at == 0.1


def test_eviction_scenario():
    registry = make_registry(evict_timeout=2.0)
    registry.update([{"id": "a", "type": "cup", "x": 0.5, "y": 0.5, "confidence": 0.9}], now=0.0)
    assert (registry.snapshot()["a"].x, registry.snapshot()["a"].y) == (0.5, 0.5)

    registry.update([], now=0.5)
    assert "a" in registry
    assert registry.snapshot()["a"].last_seen_at == 0.0

    registry.update([], now=2.5)
    assert "a" not in registry
    assert len(registry.snapshot()) == 0


def test_eviction_boundary_is_strict():
    registry = make_registry(evict_timeout=2.0)
    registry.update([det("a", 0.5, 0.5)], now=1.0)

    assert registry.sweep(3.0) == []
    assert "a" in registry
    assert registry.sweep(3.001) == ["a"]


def test_reappearing_before_timeout_keeps_continuity():
    registry = make_registry(smoothing_alpha=0.2, evict_timeout=2.0)
    registry.update([det("a", 0.5, 0.5)], now=0.0)
    registry.update([], now=1.0)
    registry.update([det("a", 0.9, 0.5)], now=1.5)

    obj = registry.snapshot()["a"]
    assert obj.x == pytest.approx(0.58)
    assert obj.last_seen_at == 1.5


def test_reappearing_after_eviction_starts_fresh():
    registry = make_registry(evict_timeout=2.0)
    registry.update([det("a", 0.1, 0.1)], now=0.0)
    registry.update([], now=3.0)
    registry.update([det("a", 0.9, 0.9)], now=3.1)

    assert (registry.snapshot()["a"].x, registry.snapshot()["a"].y) == (0.9, 0.9)


def test_duplicate_ids_last_entry_wins_for_new_object():
    registry = make_registry()
    registry.update([det("a", 0.1, 0.1, "cup", 0.3), det("a", 0.6, 0.7, "cell phone", 0.8)], now=0.0)

    obj = registry.snapshot()["a"]
    assert (obj.x, obj.y, obj.confidence) == (0.6, 0.7, 0.8)
    assert obj.type is ObjectType.PHONE
    assert len(registry) == 1


def test_duplicate_ids_smooth_once_toward_last_entry():
    registry = make_registry(smoothing_alpha=0.5)
    registry.update([det("a", 0.0, 0.0)], now=0.0)
    registry.update([det("a", 0.2, 0.2), det("a", 1.0, 1.0)], now=0.1)

    obj = registry.snapshot()["a"]
    assert obj.x == pytest.approx(0.5)
    assert obj.y == pytest.approx(0.5)


def test_empty_batch_is_noop():
    registry = make_registry()
    registry.update([det("a", 0.3, 0.3)], now=0.0)
    before = dict(registry.snapshot())
    registry.update([], now=0.1)
    assert dict(registry.snapshot()) == before


def test_malformed_items_are_dropped_individually():
    registry = make_registry()
    registry.update(
        [
            {"type": "cup", "x": 0.1, "y": 0.1},                 # no id
            {"id": "b", "type": "cup", "x": "left", "y": 0.1},    # non-numeric
            None,
            "cup",
            {"id": "c", "type": "cup", "x": float("nan"), "y": 0.2},
            {"id": "d", "x": 0.4, "y": 0.4},                      # no type
            det("a", 0.5, 0.5),
            {"id": "e", "type": "cup", "x": True, "y": 0.3},
        ],
        now=0.0,
    )
    assert set(registry.snapshot()) == {"a"}


def test_out_of_range_coordinates_are_clamped():
    registry = make_registry()
    registry.update([det("edge", 1.2, -0.05, confidence=1.7)], now=0.0)

    obj = registry.snapshot()["edge"]
    assert (obj.x, obj.y) == (1.0, 0.0)
    assert obj.confidence == 1.0


def test_accepts_detection_instances():
    registry = make_registry()
    registry.update([Detection(id="h", type=ObjectType.HAND, x=0.4, y=0.6, confidence=0.7)], now=0.0)
    assert registry.snapshot()["h"].type is ObjectType.HAND


def test_snapshot_is_read_only_and_detached():
    registry = make_registry(smoothing_alpha=0.5)
    registry.update([det("a", 0.2, 0.2)], now=0.0)
    snap = registry.snapshot()

    with pytest.raises(TypeError):
        snap["b"] = snap["a"]
    with pytest.raises(AttributeError):
        snap["a"].x = 0.9

    registry.update([det("a", 0.8, 0.8), det("z", 0.1, 0.1)], now=0.1)
    assert snap["a"].x == 0.2
    assert "z" not in snap


def test_ids_stay_unique():
    registry = make_registry()
    for t in range(10):
        registry.update([det("a", 0.5, 0.5), det("b", 0.1, 0.1), det("a", 0.4, 0.4)], now=t * 0.1)
    assert sorted(registry.snapshot()) == ["a", "b"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"smoothing_alpha": 0.0},
        {"smoothing_alpha": 1.5},
        {"evict_timeout": 0.0},
        {"match_radius": -0.1},
    ],
)
def test_invalid_construction(kwargs):
    with pytest.raises(ValueError):
        make_registry(**kwargs)


def test_from_settings_converts_milliseconds():
    registry = TrackedObjectRegistry.from_settings(
        TrackingSettings(smoothing_alpha=0.3, evict_timeout_ms=1500, match_radius=0.05)
    )
    assert registry.smoothing_alpha == 0.3
    assert registry.evict_timeout == 1.5
    assert registry.match_radius == 0.05


def test_position_matching_rekeys_unstable_ids():
    registry = make_registry(smoothing_alpha=0.5, match_radius=0.1)
    registry.update([det("local-0-cup", 0.50, 0.50)], now=0.0)
    registry.update([det("local-1-cup", 0.54, 0.50)], now=0.1)

    snap = registry.snapshot()
    assert set(snap) == {"local-0-cup"}
    assert snap["local-0-cup"].x == pytest.approx(0.52)


def test_position_matching_respects_type_and_radius():
    registry = make_registry(match_radius=0.1)
    registry.update([det("c1", 0.5, 0.5, "cup")], now=0.0)
    registry.update([det("p1", 0.52, 0.5, "cell phone"), det("c2", 0.9, 0.9, "cup")], now=0.1)

    assert set(registry.snapshot()) == {"c1", "p1", "c2"}


def test_position_matching_claims_each_object_once():
    registry = make_registry(match_radius=0.2)
    registry.update([det("a", 0.5, 0.5)], now=0.0)
    registry.update([det("x", 0.52, 0.5), det("y", 0.48, 0.5)], now=0.1)

    assert len(registry) == 2
    assert "a" in registry


def test_position_matching_leaves_reported_ids_alone():
    registry = make_registry(match_radius=0.2)
    registry.update([det("a", 0.5, 0.5)], now=0.0)
    registry.update([det("new", 0.5, 0.5), det("a", 0.55, 0.5)], now=0.1)

    assert set(registry.snapshot()) == {"a", "new"}
