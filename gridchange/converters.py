# gridchange/converters.py

import os
import json
import hashlib
import urllib.request
import geopandas as gpd
import pandas as pd
from typing import Optional, List, Callable

from gridchange.classifier import as_flag, is_present
from gridchange.constants import SIDO_COL, SGG_COL, TYPE_COL, CHANGED_COL, REGION_COLUMNS


def _standardize_columns(df: pd.DataFrame, required: List[str], optional: List[str] = ()) -> pd.DataFrame:
    """Rename columns case-insensitively to the expected names."""
    col_map = {str(c).strip().upper(): c for c in df.columns}
    missing = [c for c in required if c.upper() not in col_map]
    if missing:
        raise ValueError(f"Columns {missing} not found. Available: {list(df.columns)}")
    renames = {col_map[c.upper()]: c for c in list(required) + list(optional) if c.upper() in col_map}
    return df.rename(columns=renames)


def _strip_names(df: pd.DataFrame, cols: List[str]) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            df[col] = df[col].where(df[col].isna(), df[col].astype(str).str.strip())
    return df


def fetch_if_missing(path: str, url: Optional[str] = None, sha256: Optional[str] = None,
                     progress_callback: Optional[Callable[[float, str], None]] = None) -> str:
    """
    Returns `path` if it exists, otherwise downloads it from `url`.
    `sha256` may be given as "sha256:<hex>"; a mismatch raises ValueError.
    """
    if os.path.exists(path):
        return path
    if not url:
        raise ValueError(f"Failed to read file: {path} does not exist")

    print(f"Dataset file not found locally. Attempting download from: {url}")
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    def download_reporthook(block_num, block_size, total_size):
        if progress_callback and total_size > 0 and block_num % 100 == 0:
            progress_callback(min(block_num * block_size / total_size, 1.0),
                              f"Downloading: {block_num * block_size // 1024} KB / {total_size // 1024} KB")

    try:
        urllib.request.urlretrieve(url, path, reporthook=download_reporthook)
    except Exception as e:
        raise RuntimeError(f"Failed to download dataset: {e}")

    if sha256 and sha256.startswith("sha256:"):
        expected = sha256.split(":")[1]
        hasher = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hasher.update(chunk)
        if hasher.hexdigest().lower() != expected.lower():
            os.remove(path)
            raise ValueError("Downloaded file checksum mismatch.")
    return path


class ChangeMapLoader:
    """
    Loads the grid-cell change map (GeoJSON or any format geopandas reads)
    and normalizes it to SIDO_NM, SGG_NM, <before>, <after>, <changed>, geometry.
    """

    @staticmethod
    def load(path: str, before_col: str, after_col: str,
             changed_col: str = CHANGED_COL, layer: Optional[str] = None) -> gpd.GeoDataFrame:
        try:
            if layer:
                gdf = gpd.read_file(path, layer=layer)
            else:
                gdf = gpd.read_file(path)
        except Exception as e:
            raise ValueError(f"Failed to read file: {e}")

        # Ensure WGS84
        if gdf.crs is None:
            gdf = gdf.set_crs("EPSG:4326")
        elif gdf.crs != "EPSG:4326":
            gdf = gdf.to_crs("EPSG:4326")

        gdf = _standardize_columns(gdf, [SIDO_COL, SGG_COL], [before_col, after_col, changed_col])
        for col in (before_col, after_col):
            if col not in gdf.columns:
                gdf[col] = None

        if changed_col in gdf.columns:
            gdf[changed_col] = gdf[changed_col].map(as_flag).astype(bool)
        else:
            # Derive the flag when the file does not carry it
            print(f"[WARN] '{changed_col}' missing in {os.path.basename(path)}; deriving from year columns.")
            b = [str(v) if is_present(v) else None for v in gdf[before_col]]
            a = [str(v) if is_present(v) else None for v in gdf[after_col]]
            gdf[changed_col] = [x != y for x, y in zip(b, a)]

        return _strip_names(gdf, [SIDO_COL, SGG_COL])


class TabularLoader:
    """Loads one yearly CSV (header row, blank lines skipped) as strings."""

    @staticmethod
    def load(path: str, encoding: str = "utf-8-sig") -> pd.DataFrame:
        try:
            df = pd.read_csv(path, dtype=str, skip_blank_lines=True, encoding=encoding)
        except Exception as e:
            raise ValueError(f"Failed to read file: {e}")
        df = _standardize_columns(df, [SIDO_COL, SGG_COL, TYPE_COL])
        return _strip_names(df, [SIDO_COL, SGG_COL])


class RegionMappingLoader:
    """
    Loads the province/municipality mapping with centroids
    (sido_sgg_mapping_with_centroids.json: a list of records).
    """

    @staticmethod
    def load(path: str) -> pd.DataFrame:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except Exception as e:
            raise ValueError(f"Failed to read file: {e}")

        if isinstance(data, dict):
            data = data.get("records") or data.get("data") or []
        df = pd.DataFrame.from_records(data)
        if df.empty:
            raise ValueError(f"No region records in {path}")

        df = _standardize_columns(df, [SIDO_COL, SGG_COL], list(REGION_COLUMNS))
        for col, kind in REGION_COLUMNS.items():
            if col in df.columns:
                df[col] = pd.to_numeric(df[col], errors="coerce").astype(kind)
        return _strip_names(df, [SIDO_COL, SGG_COL])
