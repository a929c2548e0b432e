# gridchange/store.py

import threading
from typing import Optional

import geopandas as gpd
import pandas as pd

from gridchange.regions import RegionDirectory


class DatasetStore:
    """
    Holds the four loaded inputs. Each slot starts empty and is replaced
    wholesale by its loader; readers must tolerate an empty slot.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.change_map: Optional[gpd.GeoDataFrame] = None
        self.before: Optional[pd.DataFrame] = None
        self.after: Optional[pd.DataFrame] = None
        self.regions = RegionDirectory()

    def set_change_map(self, gdf: gpd.GeoDataFrame) -> None:
        with self._lock:
            self.change_map = gdf

    def set_tabular(self, before: pd.DataFrame, after: pd.DataFrame) -> None:
        with self._lock:
            self.before = before
            self.after = after

    def set_regions(self, frame: pd.DataFrame) -> None:
        with self._lock:
            self.regions = RegionDirectory(frame)

    @property
    def tabular_ready(self) -> bool:
        return (self.before is not None and not self.before.empty
                and self.after is not None and not self.after.empty)

    @property
    def change_map_ready(self) -> bool:
        return self.change_map is not None
