import folium
import geopandas as gpd
from typing import Dict

from config import MAP_CONFIG


class MapVisualizer:
    def __init__(self, category_colors: Dict[int, str] = None):
        self.tiles = MAP_CONFIG["tiles"]
        self.zoom = MAP_CONFIG["zoom_start"]
        self.category_colors = category_colors or MAP_CONFIG["category_colors"]

    def create_base_map(self, lines: gpd.GeoDataFrame = None) -> folium.Map:
        """Create a base Folium map centered on the line layer"""
        center = [0.0, 0.0]
        if lines is not None and not lines.empty:
            min_x, min_y, max_x, max_y = self._to_wgs84(lines).total_bounds
            center = [(min_y + max_y) / 2, (min_x + max_x) / 2]

        return folium.Map(location=center, zoom_start=self.zoom, tiles=self.tiles)

    def _to_wgs84(self, gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
        if gdf.crs is None:
            raise ValueError("Line layer has no CRS, cannot place it on a web map")
        return gdf.to_crs("EPSG:4326")

    def add_interaction_lines(self, map_obj: folium.Map, lines: gpd.GeoDataFrame,
                              layer_name: str = "Interaction lines") -> folium.Map:
        """Add interaction lines coloured by cluster size category"""
        if lines.empty:
            return map_obj

        layer = folium.FeatureGroup(name=layer_name)
        for _, row in self._to_wgs84(lines).iterrows():
            coords = [[lat, lon] for lon, lat in row.geometry.coords]
            category = int(row.get("category", 0))
            color = self.category_colors.get(category, MAP_CONFIG["default_color"])

            popup_content = f"""
            <b>Cluster {row['cluster_id']}</b><br>
            Events: {row['node_count']}<br>
            Category: {category}<br>
            Link: {row['source_id']} - {row['target_id']} ({row['length']:.0f} m)
            """

            folium.PolyLine(
                coords,
                color=color,
                weight=MAP_CONFIG["line_weight"] + max(category - 1, 0),
                opacity=0.8,
                popup=folium.Popup(popup_content, max_width=250)
            ).add_to(layer)

        layer.add_to(map_obj)
        return map_obj

    def create_interaction_map(self, lines: gpd.GeoDataFrame) -> folium.Map:
        """Create a map of the spatio-temporal interaction lines"""
        map_obj = self.create_base_map(lines)
        self.add_interaction_lines(map_obj, lines)
        folium.LayerControl().add_to(map_obj)
        return map_obj

    def export_map_to_html(self, map_obj: folium.Map, filename: str) -> str:
        """Export map to HTML file"""
        map_obj.save(filename)
        return filename
