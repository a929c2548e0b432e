# gridchange/overlays.py
"""
Highlight overlays for changed grid cells.
One live overlay per category key plus one reserved all-changes overlay;
showing a key again always tears the previous overlay down first.
"""

import itertools
import threading
from typing import Dict, Optional, Protocol, Tuple

import geopandas as gpd

from gridchange.classifier import TypeChangeClassifier, change_label
from gridchange.constants import (
    ALL_CHANGES_KEY, HIGHLIGHT_STYLE, FIT_BOUNDS_THRESHOLD_DEG,
    BLINK_TIMES, BLINK_SETTLE_OPACITY, BLINK_DELAY_SECONDS, BLINK_TICK_SECONDS,
    BLINK_LOW_OPACITY, BLINK_HIGH_OPACITY,
)
from gridchange.regions import RegionMatcher, Selection
from gridchange.store import DatasetStore
from gridchange.timers import BlinkTask, Scheduler, ThreadingScheduler

# (south, west, north, east)
Bounds = Tuple[float, float, float, float]

LABEL_COL = "change_label"

_handle_ids = itertools.count(1)


class OverlayHandle:
    """A rendered highlight layer bound to a filtered feature subset."""

    def __init__(self, key: str, features: gpd.GeoDataFrame, bounds: Bounds, style: Optional[dict] = None):
        self.id = next(_handle_ids)
        self.key = key
        self.features = features
        self.bounds = bounds
        self.style = dict(style or HIGHLIGHT_STYLE)
        self.live = True
        # Client-side blink replay: (times, settle, delay) or None
        self.blink = None

    @property
    def fill_opacity(self) -> float:
        return self.style.get("fillOpacity", 0.0)

    @property
    def center(self) -> Tuple[float, float]:
        south, west, north, east = self.bounds
        return (south + north) / 2.0, (west + east) / 2.0

    def __len__(self):
        return len(self.features)

    def __repr__(self):
        return f"OverlayHandle(key={self.key!r}, cells={len(self.features)}, live={self.live})"


class MapSurface(Protocol):
    """Rendering capabilities the registry relies on."""

    def add_overlay(self, handle: OverlayHandle) -> None: ...
    def remove_overlay(self, handle: OverlayHandle) -> None: ...
    def bring_to_front(self, handle: OverlayHandle) -> None: ...
    def set_fill_opacity(self, handle: OverlayHandle, value: float) -> None: ...
    def bounds(self, features: gpd.GeoDataFrame) -> Bounds: ...
    def fit_bounds(self, bounds: Bounds) -> None: ...
    def pan_to(self, lat: float, lon: float) -> None: ...
    def set_view(self, lat: float, lon: float, zoom: int) -> None: ...


def frame_viewport(bounds: Bounds, threshold: float = FIT_BOUNDS_THRESHOLD_DEG):
    """
    Camera decision for a new overlay.
    Returns ("fit", bounds) when either span exceeds `threshold` degrees,
    otherwise ("pan", (lat, lon)) keeping the current zoom.
    """
    south, west, north, east = bounds
    if abs(north - south) > threshold or abs(east - west) > threshold:
        return "fit", bounds
    return "pan", ((south + north) / 2.0, (west + east) / 2.0)


class BlinkAnimator:
    """Keeps at most one running blink per overlay key."""

    def __init__(self, surface: MapSurface, scheduler: Optional[Scheduler] = None,
                 tick: float = BLINK_TICK_SECONDS,
                 low: float = BLINK_LOW_OPACITY, high: float = BLINK_HIGH_OPACITY):
        self.surface = surface
        self.scheduler = scheduler or ThreadingScheduler()
        self.tick = tick
        self.low = low
        self.high = high
        self._tasks: Dict[str, BlinkTask] = {}
        self._lock = threading.Lock()

    def start(self, key: str, handle: OverlayHandle, times: int = BLINK_TIMES,
              settle: float = BLINK_SETTLE_OPACITY, delay: float = BLINK_DELAY_SECONDS) -> BlinkTask:
        def apply(value):
            if handle.live:
                handle.style["fillOpacity"] = value
                self.surface.set_fill_opacity(handle, value)

        task = BlinkTask(self.scheduler, apply, times, settle, delay, self.tick, self.low, self.high)
        with self._lock:
            previous = self._tasks.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._tasks[key] = task
        handle.blink = (times, settle, delay)
        return task.start()

    def cancel(self, key: str) -> None:
        with self._lock:
            task = self._tasks.pop(key, None)
        if task is not None:
            task.cancel()

    def task(self, key: str) -> Optional[BlinkTask]:
        return self._tasks.get(key)

    def cancel_all(self) -> None:
        with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
        for t in tasks:
            t.cancel()


class HighlightLayerRegistry:
    """
    Owns the category -> overlay mapping and the all-changes slot.
    Reads the change map from the shared DatasetStore on every call.
    """

    def __init__(self, store: DatasetStore, surface: MapSurface,
                 classifier: Optional[TypeChangeClassifier] = None,
                 animator: Optional[BlinkAnimator] = None,
                 fit_threshold: float = FIT_BOUNDS_THRESHOLD_DEG):
        self.store = store
        self.surface = surface
        self.classifier = classifier or TypeChangeClassifier()
        self.animator = animator or BlinkAnimator(surface)
        self.fit_threshold = fit_threshold
        self._handles: Dict[str, OverlayHandle] = {}
        self._all_changes: Optional[OverlayHandle] = None
        self._lock = threading.RLock()

    # ---- queries -------------------------------------------------------

    def handle(self, category: str) -> Optional[OverlayHandle]:
        return self._handles.get(category)

    @property
    def all_changes(self) -> Optional[OverlayHandle]:
        return self._all_changes

    def active_categories(self):
        return sorted(self._handles)

    def live_count(self) -> int:
        return len(self._handles) + (1 if self._all_changes is not None else 0)

    # ---- helpers -------------------------------------------------------

    def _subset(self, selection: Selection, category: Optional[str]) -> Optional[gpd.GeoDataFrame]:
        gdf = self.store.change_map
        if gdf is None:
            print("[WARN] Change map is not loaded yet; highlight skipped.")
            return None
        if category is None:
            m = self.classifier.change_mask(gdf)
        else:
            m = self.classifier.category_mask(gdf, category)
        subset = gdf[RegionMatcher.mask(gdf, selection) & m].copy()
        before_col, after_col = self.classifier.before_col, self.classifier.after_col
        subset[LABEL_COL] = [
            change_label(b, a)
            for b, a in zip(subset.get(before_col, [None] * len(subset)),
                            subset.get(after_col, [None] * len(subset)))
        ]
        return subset

    def _build(self, key: str, subset: gpd.GeoDataFrame) -> OverlayHandle:
        handle = OverlayHandle(key, subset, self.surface.bounds(subset))
        self.surface.add_overlay(handle)
        return handle

    def _destroy(self, key: str, handle: Optional[OverlayHandle]) -> None:
        if handle is None:
            return
        self.animator.cancel(key)
        handle.live = False
        self.surface.remove_overlay(handle)

    def _frame(self, handle: OverlayHandle) -> None:
        action, target = frame_viewport(handle.bounds, self.fit_threshold)
        if action == "fit":
            self.surface.fit_bounds(target)
        else:
            self.surface.pan_to(*target)

    # ---- per-category --------------------------------------------------

    def show_category(self, category: str, selection: Selection) -> Optional[OverlayHandle]:
        subset = self._subset(selection, category)
        if subset is None:
            return None

        with self._lock:
            self._destroy(category, self._handles.pop(category, None))
            if subset.empty:
                print(f"[INFO] No changed cells match '{category}' in {selection.label}.")
                return None
            handle = self._build(category, subset)
            self._handles[category] = handle

        self.animator.start(category, handle)
        self._frame(handle)
        return handle

    def hide_category(self, category: str) -> bool:
        """Returns True if an overlay was removed."""
        with self._lock:
            handle = self._handles.pop(category, None)
            self._destroy(category, handle)
        return handle is not None

    # ---- all changes ---------------------------------------------------

    def show_all_changes(self, selection: Selection) -> Optional[OverlayHandle]:
        subset = self._subset(selection, None)
        if subset is None:
            return None

        with self._lock:
            previous, self._all_changes = self._all_changes, None
            self._destroy(ALL_CHANGES_KEY, previous)
            if subset.empty:
                print(f"[INFO] No changed cells in {selection.label}.")
                return None
            handle = self._build(ALL_CHANGES_KEY, subset)
            self.surface.bring_to_front(handle)
            self._all_changes = handle
        return handle

    def hide_all_changes(self) -> bool:
        with self._lock:
            handle, self._all_changes = self._all_changes, None
            self._destroy(ALL_CHANGES_KEY, handle)
        return handle is not None

    def clear(self) -> None:
        """Tear down every overlay (new query or session end)."""
        with self._lock:
            for key in list(self._handles):
                self._destroy(key, self._handles.pop(key))
            self.hide_all_changes()
        self.animator.cancel_all()
