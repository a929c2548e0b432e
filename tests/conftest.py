"""
Pytest configuration and shared fixtures for GridChange tests.

Uses the real datasets.json registry and the sample files under data/,
plus small synthetic frames built in memory.
"""

import pytest
import json
import sys
from pathlib import Path

import geopandas as gpd
import pandas as pd
from shapely.geometry import box


# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Add project root to sys.path for gridchange imports
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from gridchange.service import GridChangeService  # noqa: E402
from gridchange.store import DatasetStore  # noqa: E402
from gridchange.surface import FoliumMapSurface  # noqa: E402


class FakeCall:
    def __init__(self, due, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Deterministic clock: callbacks run only inside `advance`."""

    def __init__(self):
        self.now = 0.0
        self.calls = []

    def call_later(self, delay, callback):
        call = FakeCall(self.now + delay, callback)
        self.calls.append(call)
        return call

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [c for c in self.calls if not c.cancelled and c.due <= target + 1e-9]
            if not due:
                break
            call = min(due, key=lambda c: c.due)
            self.calls.remove(call)
            self.now = call.due
            call.callback()
        self.now = target

    @property
    def pending(self):
        return [c for c in self.calls if not c.cancelled]


class RecordingSurface(FoliumMapSurface):
    """Folium surface that also logs every call the registry makes."""

    def __init__(self):
        super().__init__()
        self.events = []
        self.opacities = []

    def add_overlay(self, handle):
        self.events.append(("add", handle.key))
        super().add_overlay(handle)

    def remove_overlay(self, handle):
        self.events.append(("remove", handle.key))
        super().remove_overlay(handle)

    def bring_to_front(self, handle):
        self.events.append(("front", handle.key))
        super().bring_to_front(handle)

    def set_fill_opacity(self, handle, value):
        self.opacities.append(value)
        super().set_fill_opacity(handle, value)

    def fit_bounds(self, bounds):
        self.events.append(("fit", bounds))
        super().fit_bounds(bounds)

    def pan_to(self, lat, lon):
        self.events.append(("pan", (lat, lon)))
        super().pan_to(lat, lon)


def make_cell(lon, lat, sido, sgg, before, after, changed, size=0.01):
    return {
        "SIDO_NM": sido, "SGG_NM": sgg,
        "type_2021": before, "type_2023": after, "type_changed": changed,
        "geometry": box(lon, lat, lon + size, lat + size),
    }


@pytest.fixture(scope="session")
def project_root():
    """Returns the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def data_dir():
    return PROJECT_ROOT / "data"


@pytest.fixture(scope="session")
def datasets_config():
    """Loads the real datasets.json configuration."""
    config_path = PROJECT_ROOT / "datasets.json"
    if not config_path.exists():
        pytest.skip("datasets.json not found in project root")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def change_gdf():
    """Eight grid cells over two provinces, mirroring data/type_change_map.geojson."""
    rows = [
        make_cell(127.03, 37.49, "서울특별시", "강남구", "중심지 I", "중심지 II", True),
        make_cell(127.04, 37.49, "서울특별시", "강남구", "중심지 I", "중심지 I", False),
        make_cell(127.05, 37.50, "서울특별시", "강남구", None, "중심지 III", True),
        make_cell(126.98, 37.57, "서울특별시", "종로구", "중심지 II", "중심지 I", True),
        make_cell(126.99, 37.58, "서울특별시", "종로구", "중심지 III", None, True),
        make_cell(129.16, 35.16, "부산광역시", "해운대구", "중심지 II", "중심지 II", False),
        make_cell(129.17, 35.17, "부산광역시", "해운대구", "중심지 III", "중심지 II", True),
        make_cell(129.18, 35.16, "부산광역시", "해운대구", "중심지 I", "중심지 III", True),
    ]
    return gpd.GeoDataFrame(rows, geometry="geometry", crs="EPSG:4326")


@pytest.fixture
def store(change_gdf):
    s = DatasetStore()
    s.set_change_map(change_gdf)
    return s


@pytest.fixture
def region_frame():
    return pd.DataFrame([
        {"SIDO_NM": "서울특별시", "SGG_NM": "강남구", "lat_sido": 37.55, "lon_sido": 126.99, "lat_sgg": 37.50, "lon_sgg": 127.06},
        {"SIDO_NM": "서울특별시", "SGG_NM": "종로구", "lat_sido": 37.55, "lon_sido": 126.99, "lat_sgg": 37.59, "lon_sgg": 126.98},
        {"SIDO_NM": "부산광역시", "SGG_NM": "해운대구", "lat_sido": 35.20, "lon_sido": 129.05, "lat_sgg": 35.19, "lon_sgg": 129.16},
    ])


@pytest.fixture
def service(project_root, scheduler, surface):
    """Service over the real registry with the SAMPLE dataset loaded."""
    svc = GridChangeService(registry_path=str(project_root / "datasets.json"),
                            surface=surface, scheduler=scheduler)
    errors = svc.load_dataset("SAMPLE")
    assert errors == {}
    yield svc
    svc.close()


@pytest.fixture
def empty_service(project_root, scheduler, surface):
    """Service with the SAMPLE registry entry active but nothing loaded."""
    svc = GridChangeService(registry_path=str(project_root / "datasets.json"),
                            surface=surface, scheduler=scheduler)
    svc.active_meta = svc.registry["SAMPLE"]
    svc.active_dataset_code = "SAMPLE"
    svc._new_session()
    yield svc
    svc.close()
