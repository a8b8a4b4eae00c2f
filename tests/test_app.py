import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from projector.app import main

from conftest import det


@pytest.fixture
def client():
    # No context manager: startup would open the real camera
    yield TestClient(main.app)
    if main.engine.registry is not None:
        main.engine.registry.clear()


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "running": False}


def test_objects_endpoint(client):
    main.engine.registry.update([det("cup-1", 0.1, 0.5)], 0.0)

    response = client.get("/objects")
    assert response.status_code == 200
    (item,) = response.json()["objects"]
    assert item["id"] == "cup-1"
    assert item["type"] == "cup"
    width, height = main.settings.render.width, main.settings.render.height
    assert item["screen"] == [round(0.9 * width), round(0.5 * height)]


def test_objects_endpoint_empty(client):
    assert client.get("/objects").json() == {"objects": []}


def test_status_endpoint(client):
    data = client.get("/status").json()
    assert data["running"] is False
    assert data["camera_ready"] is False
    assert "render_fps" in data


def test_config_endpoint(client):
    data = client.get("/config").json()
    assert data["tracking"]["smoothing_alpha"] == main.settings.tracking.smoothing_alpha
    assert data["field"]["influence_radius"] == main.settings.field.influence_radius
    assert data["render"]["width"] == main.settings.render.width
    assert data["detector"]["backend"] == main.settings.detector.backend
    assert "remote_api_key" not in data["detector"]


def test_debug_performance(client):
    data = client.get("/debug/performance").json()
    assert 0 <= data["cpu_percent"]
    assert data["memory_total_mb"] > 0


def test_debug_performance_does_not_sample_cpu_inline(client, monkeypatch):
    calls = []

    def cpu_percent(interval=None):
        calls.append(interval)
        return 12.5

    monkeypatch.setattr(main.psutil, "cpu_percent", cpu_percent)
    data = client.get("/debug/performance").json()

    assert data["cpu_percent"] == 12.5
    assert calls == [None]


async def test_debug_performance_keeps_event_loop_responsive():
    gaps = []
    done = asyncio.Event()

    async def ticker():
        last = time.monotonic()
        while not done.is_set():
            await asyncio.sleep(0.01)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    task = asyncio.create_task(ticker())
    await asyncio.sleep(0.03)
    await main.debug_performance()
    await asyncio.sleep(0.03)
    done.set()
    await task

    assert max(gaps) < 0.08
