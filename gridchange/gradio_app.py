# gridchange/gradio_app.py
"""
GridChange Gradio Application
Region drill-down, yearly type counts, transition cross-tab and change highlights.
"""

import os
import tempfile
import threading
from typing import List, Optional

import gradio as gr
import pandas as pd

from gridchange.aggregation import TransitionMatrix
from gridchange.constants import ALL, COLUMN_NAMES
from gridchange.regions import UnresolvableSelectionError
from gridchange.service import GridChangeService, DataNotReadyError
from gridchange.exporter import GridChangeExporter

# Global service instance
service = GridChangeService()

# Matrix delivered by a deferred request, picked up by the poll timer
_deferred = {"matrix": None}
_deferred_lock = threading.Lock()
_loader: Optional[threading.Thread] = None


def get_dataset_choices():
    """Returns list of (label, value) tuples for Gradio dropdown."""
    return service.get_available_datasets()


def _matrix_frame(matrix: Optional[TransitionMatrix]) -> pd.DataFrame:
    if matrix is None or not matrix.row_categories:
        return pd.DataFrame()
    df = matrix.to_frame()
    df.index.name = f"{service.before_year} \\ {service.after_year}"
    return df.reset_index()


def _counts_frame(result) -> pd.DataFrame:
    return result.counts_frame(before_label=f"{service.before_year}", after_label=f"{service.after_year}")


def _status() -> str:
    parts = []
    parts.append("regions ✓" if service.store.regions.loaded else "regions …")
    parts.append("yearly data ✓" if service.store.tabular_ready else "yearly data …")
    if service.readiness.failed:
        parts.append("change map ✗")
    else:
        parts.append("change map ✓" if service.readiness.ready else "change map …")
    for name, err in service.load_errors.items():
        parts.append(f"{name} failed: {err}")
    return " | ".join(parts)


def _deliver_matrix(matrix: TransitionMatrix) -> None:
    with _deferred_lock:
        _deferred["matrix"] = matrix


def on_dataset_change(code):
    """Start loading the dataset in the background; the poll timer fills the UI."""
    global _loader
    if not code:
        return gr.update(choices=[ALL], value=ALL), _status()
    if _loader is not None and _loader.is_alive():
        raise gr.Error("A dataset is still loading. Please wait.")
    if code not in service.registry:
        raise gr.Error(f"Error loading dataset: unknown code '{code}'")
    _loader = threading.Thread(target=service.load_dataset, args=(code,), daemon=True)
    _loader.start()
    gr.Info("Loading datasets...")
    return gr.update(choices=[ALL], value=ALL), _status()


def on_province_change(sido):
    """Return municipality choices for the selected province."""
    return gr.update(choices=[ALL] + service.municipalities(sido), value=ALL)


def _province_refresh(current: Optional[List[str]], provinces: List[str]) -> Optional[List[str]]:
    """New dropdown choices when the loaded provinces differ from the shown ones."""
    if provinces and list(current or []) != provinces:
        return [ALL] + provinces
    return None


def poll(current_provinces: List[str]):
    """Periodic refresh: status line, province list once regions arrive, deferred matrix."""
    provinces = service.provinces()
    prov_update = gr.update()
    choices = _province_refresh(current_provinces, provinces)
    if choices is not None:
        prov_update = gr.update(choices=choices, value=ALL)

    matrix_update = gr.update()
    with _deferred_lock:
        matrix, _deferred["matrix"] = _deferred["matrix"], None
    if matrix is not None:
        matrix_update = gr.update(value=_matrix_frame(matrix))

    return _status(), prov_update, provinces, matrix_update


def run_search(sido, sgg):
    """Query button: counts table, transition matrix, map view."""
    with _deferred_lock:
        _deferred["matrix"] = None
    try:
        result = service.search(sido, sgg, on_matrix=_deliver_matrix)
    except DataNotReadyError as e:
        raise gr.Error(str(e))
    except UnresolvableSelectionError as e:
        raise gr.Error(f"Region not found: {e}")

    counts = _counts_frame(result)
    categories = [c.category for c in result.counts_table]
    # Same selection keeps its overlays; keep the controls in step with them
    shown, all_shown = service.highlight_state()
    shown = [c for c in shown if c in categories]
    if result.matrix is None:
        gr.Info("Change map is still loading; the transition table will appear when it is ready.")

    return (
        service.surface.to_html(),
        counts,
        _matrix_frame(result.matrix),
        gr.update(choices=categories, value=shown),
        gr.update(value=all_shown),
        shown,
        result,
    )


def on_category_toggle(checked: List[str], previous: List[str], sido, sgg):
    """Show newly checked categories, hide unchecked ones."""
    checked = checked or []
    previous = previous or []
    try:
        selection = service.selection(sido, sgg)
    except UnresolvableSelectionError as e:
        raise gr.Error(str(e))

    for category in previous:
        if category not in checked:
            service.hide_category(category)
    for category in checked:
        if category not in previous:
            if service.show_category(category, selection) is None:
                gr.Info(f"No changed cells for '{category}' in {selection.label}.")
    return service.surface.to_html(), checked


def _clicked_target(index, counts: pd.DataFrame) -> Optional[str]:
    """
    Category named by a clicked counts-table cell, or None when the click
    landed in the absolute-change column (which means every changed cell).
    """
    if isinstance(index, (list, tuple)):
        row, col = index[0], (index[1] if len(index) > 1 else 0)
    else:
        row, col = index, 0
    if counts.columns[col] == COLUMN_NAMES['delta']:
        return None
    return str(counts.iloc[row][COLUMN_NAMES['category']])


def _highlight_controls():
    shown, all_shown = service.highlight_state()
    return gr.update(value=shown), shown, gr.update(value=all_shown)


def on_counts_select(evt: gr.SelectData, counts: pd.DataFrame, sido, sgg):
    """
    Clicking a counts-table row highlights that category's changed cells;
    clicking in the absolute-change column highlights all changed cells.
    """
    if counts is None or len(counts) == 0:
        return (gr.update(),) + _highlight_controls()
    category = _clicked_target(evt.index, counts)
    try:
        selection = service.selection(sido, sgg)
    except UnresolvableSelectionError as e:
        raise gr.Error(str(e))
    if category is None:
        if service.show_all_changes(selection) is None:
            gr.Info(f"No changed cells in {selection.label}.")
    elif service.show_category(category, selection) is None:
        gr.Info(f"No changed cells for '{category}' in {selection.label}.")
    return (service.surface.to_html(),) + _highlight_controls()


def on_all_changes_toggle(checked: bool, sido, sgg):
    if checked:
        try:
            selection = service.selection(sido, sgg)
        except UnresolvableSelectionError as e:
            raise gr.Error(str(e))
        if service.show_all_changes(selection) is None:
            gr.Info(f"No changed cells in {selection.label}.")
    else:
        service.hide_all_changes()
    return service.surface.to_html()


def export_data(result, sido, sgg):
    if result is None:
        raise gr.Error("No results to export. Run a query first.")
    if result.matrix is None and service.readiness.ready:
        result.matrix = service.transition_matrix(service.current_selection)
    out_dir = tempfile.mkdtemp(prefix="gridchange_")
    label = service.current_selection.label.replace(' ', '_') if service.current_selection else "region"
    path = os.path.join(out_dir, f"GridChange_{label}_{service.before_year}_{service.after_year}.xlsx")
    GridChangeExporter.export_excel_report(
        path, result,
        {"dataset": service.active_dataset_code, "province": sido, "municipality": sgg,
         "before_year": service.before_year, "after_year": service.after_year},
        before_label=f"{service.before_year}", after_label=f"{service.after_year}",
    )
    gr.Info(f"✅ Report saved: {path}", duration=10)
    return path


# ===================== BUILD GRADIO UI =====================

css = """
#map-container, #map-container > div {
    width: 100%;
    min-height: 100px;
}
"""

with gr.Blocks(title="GridChange", css=css) as app:

    last_result = gr.State()
    shown_categories = gr.State([])
    known_provinces = gr.State([])

    gr.Markdown("""
    # 🗺️ GridChange: Centre Type Change Explorer

    Compare grid-cell centre types between two survey years and inspect where they changed.
    """)

    with gr.Row():
        with gr.Column(scale=1, min_width=300):
            gr.Markdown("### 📍 Dataset & Region")

            dataset_dd = gr.Dropdown(
                choices=get_dataset_choices(),
                label="Dataset",
                interactive=True,
                value=None,
            )
            sido_dd = gr.Dropdown(choices=[ALL], value=ALL, label="Province (시도)", interactive=True)
            sgg_dd = gr.Dropdown(choices=[ALL], value=ALL, label="Municipality (시군구)", interactive=True)

            search_btn = gr.Button("🔍 Search", variant="primary")

            gr.Markdown("### ✨ Highlights")
            category_chk = gr.CheckboxGroup(choices=[], label="Highlight changed cells by type")
            all_changes_chk = gr.Checkbox(value=False, label="Highlight all changed cells")

            gr.Markdown("### 📤 Export")
            export_btn = gr.Button("📥 Excel", size="sm")
            export_out = gr.File(label="Download", height=60)

            status_out = gr.Textbox(label="Status", interactive=False, lines=1)

        with gr.Column(scale=3):
            map_out = gr.HTML(value=service.surface.to_html(), elem_id="map-container")
            with gr.Tabs():
                with gr.Tab("📊 Type Counts"):
                    counts_out = gr.DataFrame(label="Counts by type (click a row to highlight it, or the change column for all changes)", interactive=False)
                with gr.Tab("🔀 Transitions"):
                    matrix_out = gr.DataFrame(label="Before type (rows) → after type (columns)", interactive=False)

    timer = gr.Timer(2.0)

    # Event Handlers
    dataset_dd.change(on_dataset_change, inputs=[dataset_dd], outputs=[sido_dd, status_out])
    sido_dd.change(on_province_change, inputs=[sido_dd], outputs=[sgg_dd])

    timer.tick(poll, inputs=[known_provinces], outputs=[status_out, sido_dd, known_provinces, matrix_out])

    search_btn.click(
        run_search,
        inputs=[sido_dd, sgg_dd],
        outputs=[map_out, counts_out, matrix_out, category_chk, all_changes_chk, shown_categories, last_result],
    )

    category_chk.input(
        on_category_toggle,
        inputs=[category_chk, shown_categories, sido_dd, sgg_dd],
        outputs=[map_out, shown_categories],
    )
    counts_out.select(
        on_counts_select,
        inputs=[counts_out, sido_dd, sgg_dd],
        outputs=[map_out, category_chk, shown_categories, all_changes_chk],
    )
    all_changes_chk.input(on_all_changes_toggle, inputs=[all_changes_chk, sido_dd, sgg_dd], outputs=[map_out])

    export_btn.click(export_data, inputs=[last_result, sido_dd, sgg_dd], outputs=[export_out])

if __name__ == "__main__":
    app.launch(theme=gr.themes.Soft())
