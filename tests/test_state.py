import pytest

from projector.app.state import Detection, EngineStatus, ObjectType, TrackedObject


@pytest.mark.parametrize(
    "label, expected",
    [
        ("cup", ObjectType.CUP),
        ("CUP", ObjectType.CUP),
        ("cell phone", ObjectType.PHONE),
        ("smartphone", ObjectType.PHONE),
        ("phone", ObjectType.PHONE),
        ("hand", ObjectType.HAND),
        ("coin", ObjectType.COIN),
        ("banana", ObjectType.UNKNOWN),
        (ObjectType.LAPTOP, ObjectType.LAPTOP),
    ],
)
def test_object_type_parse(label, expected):
    assert ObjectType.parse(label) is expected


def test_from_raw_full_item():
    d = Detection.from_raw({"id": "cup-1", "type": "cup", "x": 0.25, "y": 0.75, "confidence": 0.6})
    assert d == Detection(id="cup-1", type=ObjectType.CUP, x=0.25, y=0.75, confidence=0.6)


def test_from_raw_integer_id_and_missing_confidence():
    d = Detection.from_raw({"id": 7, "type": "coin", "x": 0, "y": 1})
    assert d.id == "7"
    assert d.confidence == 1.0
    assert (d.x, d.y) == (0.0, 1.0)


@pytest.mark.parametrize(
    "raw",
    [
        {"id": "", "type": "cup", "x": 0.1, "y": 0.1},
        {"id": True, "type": "cup", "x": 0.1, "y": 0.1},
        {"id": "a", "type": "", "x": 0.1, "y": 0.1},
        {"id": "a", "type": "cup", "x": 0.1},
        {"id": "a", "type": "cup", "x": None, "y": 0.1},
        {"id": "a", "type": "cup", "x": 0.1, "y": float("inf")},
        {"id": "a", "type": "cup", "x": 0.1, "y": 0.1, "confidence": "high"},
        ["a", "cup", 0.1, 0.1],
    ],
)
def test_from_raw_rejects_malformed(raw):
    assert Detection.from_raw(raw) is None


def test_from_raw_clamps_detection_instances():
    d = Detection(id="a", type=ObjectType.CUP, x=-0.2, y=1.3, confidence=2.0)
    assert Detection.from_raw(d) == Detection(id="a", type=ObjectType.CUP, x=0.0, y=1.0, confidence=1.0)


def test_tracked_object_to_dict():
    obj = TrackedObject(id="a", type=ObjectType.PHONE, x=0.123456, y=0.5, confidence=0.91234, last_seen_at=3.0)
    assert obj.to_dict() == {"id": "a", "type": "cell phone", "x": 0.1235, "y": 0.5, "confidence": 0.912}


def test_engine_status_defaults():
    data = EngineStatus().to_dict()
    assert data["running"] is False
    assert data["camera_error"] is None
    assert data["tracked_objects"] == 0
