# gridchange/constants.py
"""
GridChange Constants and Configuration
Field names, sentinels, overlay styles and timing for the type-change map.
"""

# Region columns shared by the change map, the yearly CSVs and the region mapping
SIDO_COL = "SIDO_NM"
SGG_COL = "SGG_NM"

# Tabular category column (bf_<year>.csv / af_<year>.csv)
TYPE_COL = "type"

# Change map defaults
DEFAULT_BEFORE_YEAR = 2021
DEFAULT_AFTER_YEAR = 2023
CHANGED_COL = "type_changed"

# Selection sentinel for "not chosen" (dropdown value)
ALL = "all"

# Registry key reserved for the all-changes overlay
ALL_CHANGES_KEY = "__all_changes__"

# Tooltip placeholder when a year has no category
MISSING_TYPE_LABEL = "없음"

# Region mapping centroid columns
REGION_COLUMNS = {
    "lat_sido": float,
    "lon_sido": float,
    "lat_sgg": float,
    "lon_sgg": float,
}

# Initial / nationwide viewport (Seoul City Hall)
NATIONWIDE_VIEW = (37.5665, 126.9780, 7)
PROVINCE_ZOOM = 10
MUNICIPALITY_ZOOM = 12

# Camera policy: spans above this (degrees) fit the bounds, otherwise pan
FIT_BOUNDS_THRESHOLD_DEG = 0.3

# Highlight overlay style
HIGHLIGHT_STYLE = {
    "color": "#ffff00",
    "weight": 1.5,
    "fillColor": "#ffff00",
    "fillOpacity": 0.0,
    "opacity": 1,
    "dashArray": None,
    "className": "glow-effect",
}

# Attention blink
BLINK_LOW_OPACITY = 0.05
BLINK_HIGH_OPACITY = 0.6
BLINK_TICK_SECONDS = 0.3
BLINK_TIMES = 4
BLINK_SETTLE_OPACITY = 0.0
BLINK_DELAY_SECONDS = 0.4

# Export Configuration
EXPORT_CONFIG = {
    "excel": {
        "sheet_name_counts": "Type_Counts",
        "sheet_name_matrix": "Transition_Matrix",
        "sheet_name_meta": "Metadata",
    }
}

# Column name mapping: programmatic -> user-friendly
COLUMN_NAMES = {
    'category': 'Centre Type',
    'before': 'Before',
    'after': 'After',
    'delta': 'Absolute Change',
}
