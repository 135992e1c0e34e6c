import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(os.environ.get("NEAR_REPEAT_DATA_DIR", PROJECT_ROOT / "data"))
RAW_DATA_DIR = DATA_DIR / "raw"
PROCESSED_DATA_DIR = DATA_DIR / "processed"
OUTPUT_DIR = DATA_DIR / "output"

# Incident table ingestion
INGESTION_CONFIG = {
    "id_column": "incident_id",
    "x_column": "longitude",
    "y_column": "latitude",
    "date_column": "date",
    "category_column": "category",
    "category_code_column": "category_code",
    "source_crs": "EPSG:4326",
    "projected_crs": "EPSG:32614",  # UTM zone 14N, true meters around Mexico City
    "date_format": None  # let pandas infer
}

# Core computation parameters
ANALYSIS_CONFIG = {
    "block_elements": 4_000_000,  # distance matrix entries per pairwise block
    "max_cached_pairs": 20_000_000,  # spatial band codes kept in memory up to this many pairs
    "n_jobs": 1,
    "leaf_size": 40
}

# Per crime type analysis profiles
ANALYSIS_PROFILES = {
    "street_robbery": {
        "category": "street robbery",
        "knox": {
            "spatial_interval": 100.0,
            "spatial_bands": 5,
            "temporal_interval": 7,
            "temporal_bands": 5,
            "iterations": 99,
            "seed": 42
        },
        "interaction": {
            "spatial_threshold": 150.0,
            "temporal_threshold": 7
        }
    },
    "vehicle_theft": {
        "category": "vehicle theft",
        "knox": {
            "spatial_interval": 200.0,
            "spatial_bands": 5,
            "temporal_interval": 14,
            "temporal_bands": 4,
            "iterations": 99,
            "seed": 42
        },
        "interaction": {
            "spatial_threshold": 250.0,
            "temporal_threshold": 14
        }
    }
}

# Natural breaks classification of cluster sizes
CLASSIFICATION_CONFIG = {
    "n_classes": 4,
    "min_display_category": 2,
    "significance_level": 0.05
}

# File naming conventions
FILE_PATTERNS = {
    "processed_events": "events_{profile}_{timestamp}.csv",
    "knox_results": "knox_{profile}_{timestamp}.json",
    "interaction_lines": "interaction_lines_{profile}_{timestamp}.geojson",
    "knox_figure": "knox_{profile}_{timestamp}.png",
    "knox_chart": "knox_ratios_{profile}_{timestamp}.html",
    "cluster_chart": "cluster_sizes_{profile}_{timestamp}.html",
    "interaction_map": "interaction_map_{profile}_{timestamp}.html"
}

# Map rendering
MAP_CONFIG = {
    "tiles": "OpenStreetMap",
    "zoom_start": 13,
    "category_colors": {1: "#fecc5c", 2: "#fd8d3c", 3: "#f03b20", 4: "#bd0026"},
    "default_color": "gray",
    "line_weight": 2
}


def ensure_directories():
    """Create data and output directories if missing"""
    for directory in [RAW_DATA_DIR, PROCESSED_DATA_DIR, OUTPUT_DIR]:
        directory.mkdir(parents=True, exist_ok=True)
