# gridchange/surface.py
"""
Folium implementation of the overlay registry's MapSurface.
Keeps overlay draw order and viewport state; `render()` turns them into a
folium.Map, replaying each new overlay's attention blink in the browser.
"""

from typing import List, Optional, Set

import folium
import geopandas as gpd

from gridchange.constants import (
    NATIONWIDE_VIEW, BLINK_TICK_SECONDS, BLINK_LOW_OPACITY, BLINK_HIGH_OPACITY,
)
from gridchange.overlays import Bounds, OverlayHandle, LABEL_COL

GLOW_CSS = """
<style>
  .glow-effect { filter: drop-shadow(0 0 3px #ffff00) drop-shadow(0 0 6px #ffd700); }
</style>
"""

BLINK_JS = """
<script>
setTimeout(function() {{
  var layer = {layer};
  var count = 0;
  var interval = setInterval(function() {{
    layer.setStyle({{fillOpacity: (count % 2 === 0) ? {low} : {high}}});
    count++;
    if (count >= {ticks}) {{
      clearInterval(interval);
      layer.setStyle({{fillOpacity: {settle}}});
    }}
  }}, {tick_ms});
}}, {delay_ms});
</script>
"""


class FoliumMapSurface:

    def __init__(self, height: str = "700px", tiles: str = "CartoDB positron"):
        self.height = height
        self.tiles = tiles
        self.overlays: List[OverlayHandle] = []
        self.center = NATIONWIDE_VIEW[:2]
        self.zoom = NATIONWIDE_VIEW[2]
        self.fit: Optional[Bounds] = None
        self._replayed: Set[int] = set()

    # ---- MapSurface ----------------------------------------------------

    def add_overlay(self, handle: OverlayHandle) -> None:
        self.overlays.append(handle)

    def remove_overlay(self, handle: OverlayHandle) -> None:
        if handle in self.overlays:
            self.overlays.remove(handle)
        self._replayed.discard(handle.id)

    def bring_to_front(self, handle: OverlayHandle) -> None:
        if handle in self.overlays:
            self.overlays.remove(handle)
            self.overlays.append(handle)

    def set_fill_opacity(self, handle: OverlayHandle, value: float) -> None:
        handle.style["fillOpacity"] = value

    def bounds(self, features: gpd.GeoDataFrame) -> Bounds:
        minx, miny, maxx, maxy = features.total_bounds
        return float(miny), float(minx), float(maxy), float(maxx)

    def fit_bounds(self, bounds: Bounds) -> None:
        self.fit = bounds

    def pan_to(self, lat: float, lon: float) -> None:
        self.center = (lat, lon)
        self.fit = None

    def set_view(self, lat: float, lon: float, zoom: int) -> None:
        self.center = (lat, lon)
        self.zoom = zoom
        self.fit = None

    # ---- rendering -----------------------------------------------------

    @staticmethod
    def render_style(handle: OverlayHandle) -> dict:
        """
        Style written into the map HTML. A blinking overlay is drawn at its
        settle opacity; the browser runs the blink from the replay script.
        """
        style = dict(handle.style)
        if handle.blink is not None:
            style["fillOpacity"] = handle.blink[1]
        return style

    def render(self) -> folium.Map:
        m = folium.Map(location=list(self.center), zoom_start=self.zoom, tiles=self.tiles,
                       height=self.height, control_scale=True)
        m.get_root().header.add_child(folium.Element(GLOW_CSS))

        for handle in self.overlays:
            style = self.render_style(handle)
            layer = folium.GeoJson(
                handle.features[[LABEL_COL, "geometry"]],
                name=f"Change: {handle.key}",
                style_function=lambda _feature, style=style: style,
                tooltip=folium.GeoJsonTooltip(
                    fields=[LABEL_COL], aliases=["중심지 변화"], sticky=True, labels=True,
                ),
            ).add_to(m)

            if handle.blink is not None and handle.id not in self._replayed:
                times, settle, delay = handle.blink
                m.get_root().html.add_child(folium.Element(BLINK_JS.format(
                    layer=layer.get_name(), low=BLINK_LOW_OPACITY, high=BLINK_HIGH_OPACITY,
                    ticks=times * 2, settle=settle,
                    tick_ms=int(BLINK_TICK_SECONDS * 1000), delay_ms=int(delay * 1000),
                )))
                self._replayed.add(handle.id)

        if self.fit is not None:
            south, west, north, east = self.fit
            m.fit_bounds([[south, west], [north, east]])

        if self.overlays:
            folium.LayerControl(collapsed=True).add_to(m)
        return m

    def to_html(self) -> str:
        return self.render()._repr_html_()
