# gridchange/service.py

import json
import os
import time
import concurrent.futures
from typing import List, Optional, Dict, Tuple, Callable

from gridchange.aggregation import AggregationResult, CategoryCount, TransitionAggregator, TransitionMatrix
from gridchange.classifier import TypeChangeClassifier
from gridchange.constants import DEFAULT_BEFORE_YEAR, DEFAULT_AFTER_YEAR, CHANGED_COL
from gridchange.converters import ChangeMapLoader, TabularLoader, RegionMappingLoader, fetch_if_missing
from gridchange.overlays import BlinkAnimator, HighlightLayerRegistry, MapSurface, OverlayHandle
from gridchange.readiness import ReadinessCoordinator
from gridchange.regions import RegionMatcher, Selection
from gridchange.store import DatasetStore
from gridchange.surface import FoliumMapSurface
from gridchange.timers import Scheduler

ProgressCallback = Callable[[float, str], None]


class DataNotReadyError(RuntimeError):
    """Raised when the yearly records needed for a query are not loaded."""


class GridChangeService:
    """
    Core service for the type-change map.
    Owns the dataset store, the change-map readiness state and the highlight
    registry; the UI only calls the methods below.
    """

    def __init__(self, registry_path: Optional[str] = None,
                 surface: Optional[MapSurface] = None,
                 scheduler: Optional[Scheduler] = None):
        registry_path = registry_path or os.environ.get("GRIDCHANGE_REGISTRY", "datasets.json")
        if os.path.exists(registry_path):
            with open(registry_path, 'r', encoding='utf-8') as f:
                self.registry = json.load(f)
        else:
            self.registry = {}
        self.registry_dir = os.path.dirname(os.path.abspath(registry_path))

        self.surface = surface if surface is not None else FoliumMapSurface()
        self.scheduler = scheduler
        self.active_dataset_code: Optional[str] = None
        self.active_meta: Dict = {}
        self._new_session()

    def _new_session(self) -> None:
        self.store = DatasetStore()
        self.readiness = ReadinessCoordinator()
        self.classifier = TypeChangeClassifier(
            before_col=self.active_meta.get("before_col", f"type_{self.before_year}"),
            after_col=self.active_meta.get("after_col", f"type_{self.after_year}"),
            changed_col=self.active_meta.get("changed_col", CHANGED_COL),
        )
        self.aggregator = TransitionAggregator(self.classifier)
        self.highlights = HighlightLayerRegistry(
            self.store, self.surface, self.classifier,
            animator=BlinkAnimator(self.surface, self.scheduler),
        )
        self.load_errors: Dict[str, str] = {}
        self.current_selection: Optional[Selection] = None

    # ---- registry ------------------------------------------------------

    def get_available_datasets(self) -> List[Tuple[str, str]]:
        """Returns list of (label, code) for available datasets."""
        return [(conf.get('name', code), code) for code, conf in self.registry.items()]

    @property
    def before_year(self) -> int:
        return int(self.active_meta.get('before_year', DEFAULT_BEFORE_YEAR))

    @property
    def after_year(self) -> int:
        return int(self.active_meta.get('after_year', DEFAULT_AFTER_YEAR))

    def _resolve_path(self, conf: Dict, key: str) -> str:
        path = conf.get(key)
        if not path:
            raise ValueError(f"Dataset config has no '{key}' entry")
        if os.path.isabs(path):
            candidates = [path]
        else:
            candidates = [os.path.join(self.registry_dir, path),
                          os.path.join(self.registry_dir, "data", path)]
        for candidate in candidates:
            if os.path.exists(candidate):
                return candidate
        # Not found locally: download next to the registry if a URL is configured
        return fetch_if_missing(candidates[-1], conf.get(f"{key}_url"), conf.get(f"{key}_sha256"))

    # ---- loading -------------------------------------------------------

    def _report_failure(self, name: str, error: Exception) -> None:
        self.load_errors[name] = str(error)
        print(f"[ERROR] {name} load failed: {error}")
        if name == "change_map":
            # No map is coming; release any parked matrix request
            self.readiness.mark_failed()

    def load_change_map(self, path: str, layer: Optional[str] = None) -> bool:
        try:
            gdf = ChangeMapLoader.load(path, self.classifier.before_col, self.classifier.after_col,
                                       self.classifier.changed_col, layer=layer)
        except Exception as e:
            self._report_failure("change_map", e)
            return False
        self.store.set_change_map(gdf)
        self.readiness.mark_ready()
        return True

    def load_tabular(self, before_path: str, after_path: str) -> bool:
        start = time.perf_counter()
        try:
            before = TabularLoader.load(before_path)
            after = TabularLoader.load(after_path)
        except Exception as e:
            self._report_failure("tabular", e)
            return False
        self.store.set_tabular(before, after)
        print(f"[INFO] Tabular load time: {(time.perf_counter() - start) * 1000:.2f} ms")
        return True

    def load_regions(self, path: str) -> bool:
        try:
            frame = RegionMappingLoader.load(path)
        except Exception as e:
            self._report_failure("regions", e)
            return False
        self.store.set_regions(frame)
        return True

    def load_dataset(self, code: str, progress_callback: Optional[ProgressCallback] = None,
                     max_workers: int = 3) -> Dict[str, str]:
        """
        Loads the change map, both yearly CSVs and the region mapping of a
        registry entry concurrently. Each input is independent: a failure is
        reported and leaves only its own slot empty.

        Returns the load errors (empty dict on full success).
        """
        if code not in self.registry:
            raise ValueError(f"Dataset code '{code}' not found in registry.")
        if progress_callback: progress_callback(0.05, "Initializing dataset loading...")

        if self.active_dataset_code is not None:
            self.close()
        self.active_meta = self.registry[code]
        self.active_dataset_code = code
        self._new_session()
        conf = self.active_meta

        def resolved(*keys):
            return [self._resolve_path(conf, k) for k in keys]

        jobs = {
            "regions": lambda: self.load_regions(*resolved("regions")),
            "tabular": lambda: self.load_tabular(*resolved("before_csv", "after_csv")),
            "change_map": lambda: self.load_change_map(*resolved("change_map"), layer=conf.get("layer")),
        }

        completed = 0
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_name = {executor.submit(job): name for name, job in jobs.items()}
            for future in concurrent.futures.as_completed(future_to_name):
                name = future_to_name[future]
                completed += 1
                try:
                    future.result()
                except Exception as e:
                    # Path resolution / download failures
                    self._report_failure(name, e)
                if progress_callback:
                    progress_callback(completed / len(jobs), f"Loaded {name}")

        return dict(self.load_errors)

    # ---- regions -------------------------------------------------------

    def provinces(self) -> List[str]:
        return self.store.regions.provinces()

    def municipalities(self, sido: Optional[str]) -> List[str]:
        return self.store.regions.municipalities(sido)

    def selection(self, sido: Optional[str], sgg: Optional[str] = None) -> Selection:
        """
        Builds a Selection from dropdown values and checks the pair against
        the region mapping when it is loaded.
        """
        selection = Selection.from_values(sido, sgg)
        if self.store.regions.loaded:
            self.store.regions.validate(selection)
        return selection

    def resolve_view(self, selection: Selection) -> Tuple[float, float, int]:
        return self.store.regions.resolve_view(selection)

    # ---- aggregation ---------------------------------------------------

    def _ensure_tabular(self) -> None:
        if not self.store.tabular_ready:
            raise DataNotReadyError("Yearly data is still loading. Please try again shortly.")

    def counts_table(self, selection: Selection) -> List[CategoryCount]:
        self._ensure_tabular()
        before = RegionMatcher.filter(self.store.before, selection)
        after = RegionMatcher.filter(self.store.after, selection)
        return self.aggregator.compare_counts(
            self.aggregator.count_by_category(before),
            self.aggregator.count_by_category(after),
        )

    def transition_matrix(self, selection: Selection) -> TransitionMatrix:
        gdf = self.store.change_map
        if gdf is None:
            if self.readiness.failed:
                print(f"[WARN] Change map failed to load; transition matrix for {selection.label} is empty.")
                return TransitionMatrix()
            raise DataNotReadyError("Change map is not loaded.")
        return self.aggregator.build_transition_matrix(RegionMatcher.filter(gdf, selection))

    def request_transition_matrix(self, selection: Selection,
                                  callback: Callable[[TransitionMatrix], None]) -> bool:
        """
        Computes the matrix now if the change map has loaded or failed (a
        failed map gives an empty matrix), otherwise defers it, replacing any
        earlier deferred request. Returns True if it ran.
        """
        ran = self.readiness.run_when_ready(lambda: callback(self.transition_matrix(selection)))
        if not ran:
            print(f"[INFO] Change map still loading; transition matrix for {selection.label} deferred.")
        return ran

    def run_aggregation(self, selection: Selection,
                        on_matrix: Optional[Callable[[TransitionMatrix], None]] = None) -> AggregationResult:
        """
        Counts table plus transition matrix for a selection. When the change
        map is still loading, `matrix` is None and `on_matrix` (if given)
        receives it once the map arrives.
        """
        counts = self.counts_table(selection)

        if self.current_selection is not None and self.current_selection != selection:
            self.highlights.clear()
        self.current_selection = selection

        result = AggregationResult(counts_table=counts)

        def deliver(matrix: TransitionMatrix) -> None:
            result.matrix = matrix
            if on_matrix is not None:
                on_matrix(matrix)

        self.request_transition_matrix(selection, deliver)
        return result

    def search(self, sido: Optional[str], sgg: Optional[str] = None,
               on_matrix: Optional[Callable[[TransitionMatrix], None]] = None) -> AggregationResult:
        """
        The query action: validate the region, aggregate, then move the map
        to the region's view. Nothing changes if the region is unresolvable.
        """
        self._ensure_tabular()
        selection = self.selection(sido, sgg)
        view = self.resolve_view(selection)
        result = self.run_aggregation(selection, on_matrix=on_matrix)
        self.surface.set_view(*view)
        return result

    # ---- highlights ----------------------------------------------------

    def show_category(self, category: str, selection: Selection) -> Optional[OverlayHandle]:
        return self.highlights.show_category(category, selection)

    def hide_category(self, category: str) -> bool:
        return self.highlights.hide_category(category)

    def show_all_changes(self, selection: Selection) -> Optional[OverlayHandle]:
        return self.highlights.show_all_changes(selection)

    def hide_all_changes(self) -> bool:
        return self.highlights.hide_all_changes()

    def highlight_state(self) -> Tuple[List[str], bool]:
        """Categories with a live overlay, and whether the all-changes overlay is shown."""
        return self.highlights.active_categories(), self.highlights.all_changes is not None

    def close(self) -> None:
        """Session end: tear down overlays and stop animations."""
        self.highlights.clear()
