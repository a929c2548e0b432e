# gridchange/exporter.py
"""
GridChange Export Module
Writes a region query's counts table and transition matrix to Excel.
"""

import pandas as pd
from datetime import datetime
from typing import Dict, Any, Optional

from gridchange.aggregation import AggregationResult
from gridchange.constants import EXPORT_CONFIG


class GridChangeExporter:
    """
    Handles export of aggregation results.
    """

    @staticmethod
    def export_excel_report(output_path: str,
                            result: AggregationResult,
                            metadata_dict: Dict[str, Any],
                            before_label: Optional[str] = None,
                            after_label: Optional[str] = None) -> str:
        """
        Generates a multi-sheet Excel report.

        Sheets:
        1. Type_Counts - per-category counts for both years and the change
        2. Transition_Matrix - before type (rows) x after type (columns);
           omitted while the change map has not been aggregated
        3. Metadata - query parameters
        """
        sheets = EXPORT_CONFIG["excel"]

        meta = dict(metadata_dict)
        meta.setdefault("exported_at", datetime.now().isoformat(timespec="seconds"))
        meta_df = pd.DataFrame({
            'Parameter': list(meta.keys()),
            'Value': [str(v) for v in meta.values()]
        })

        kwargs = {}
        if before_label: kwargs["before_label"] = before_label
        if after_label: kwargs["after_label"] = after_label
        counts_df = result.counts_frame(**kwargs)

        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            counts_df.to_excel(writer, sheet_name=sheets["sheet_name_counts"], index=False)

            if result.matrix is not None and result.matrix.row_categories:
                result.matrix.to_frame().to_excel(writer, sheet_name=sheets["sheet_name_matrix"])

            meta_df.to_excel(writer, sheet_name=sheets["sheet_name_meta"], index=False)

        return output_path
