import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import geopandas as gpd
import numpy as np
import pandas as pd

from config import FILE_PATTERNS, INGESTION_CONFIG, PROCESSED_DATA_DIR
from spacetime.events import EVENT_COLUMNS, EventStore
from spacetime.exceptions import InputError

logger = logging.getLogger(__name__)


class IncidentPreprocessor:
    def __init__(self, column_config: Dict[str, Any] = None):
        self.config = dict(INGESTION_CONFIG)
        if column_config:
            self.config.update(column_config)
        self.processed_data = None

    def load_incidents(self, path: Union[str, Path]) -> pd.DataFrame:
        """Load the raw incident table from CSV"""
        path = Path(path)
        if not path.exists():
            raise InputError(f"Incident file not found: {path}")

        df = pd.read_csv(path, low_memory=False)
        missing = [self.config[key] for key in ["id_column", "x_column", "y_column", "date_column"]
                   if self.config[key] not in df.columns]
        if missing:
            raise InputError(f"Incident file {path.name} is missing column(s): {', '.join(missing)}")

        logger.info(f"Loaded {len(df)} incidents from {path}")
        return df

    def translate_categories(self, df: pd.DataFrame, lookup: pd.DataFrame,
                             code_column: str = "code", name_column: str = "category") -> pd.DataFrame:
        """Attach category names from a code lookup table"""
        incident_code = self.config["category_code_column"]
        if incident_code not in df.columns:
            raise InputError(f"Incident table has no '{incident_code}' column to translate")

        lookup = lookup[[code_column, name_column]].drop_duplicates(subset=code_column)
        translated = df.merge(
            lookup.rename(columns={code_column: incident_code, name_column: self.config["category_column"]}),
            on=incident_code,
            how="left",
            suffixes=("_raw", "")
        )

        untranslated = translated[self.config["category_column"]].isna().sum()
        if untranslated:
            logger.warning(f"{untranslated} incidents have a category code missing from the lookup table")
        return translated

    def filter_incidents(self, df: pd.DataFrame, category: Optional[str] = None,
                         start: Optional[Any] = None, end: Optional[Any] = None) -> pd.DataFrame:
        """Keep one crime category inside the study window (both ends inclusive)"""
        filtered = df.copy()
        dates = pd.to_datetime(filtered[self.config["date_column"]], errors="coerce",
                               format=self.config["date_format"]).dt.normalize()

        mask = pd.Series(True, index=filtered.index)
        if category is not None:
            category_column = self.config["category_column"]
            if category_column not in filtered.columns:
                raise InputError(f"Incident table has no '{category_column}' column")
            mask &= filtered[category_column].astype(str).str.lower() == category.lower()
        if start is not None:
            mask &= dates >= pd.Timestamp(start).normalize()
        if end is not None:
            mask &= dates <= pd.Timestamp(end).normalize()

        filtered = filtered[mask]
        logger.info(f"Kept {len(filtered)} of {len(df)} incidents (category={category}, window={start}..{end})")
        return filtered

    def clean_incidents(self, df: pd.DataFrame) -> pd.DataFrame:
        """Drop incidents without usable coordinates, dates or ids"""
        id_col, x_col, y_col, date_col = (
            self.config["id_column"], self.config["x_column"],
            self.config["y_column"], self.config["date_column"]
        )

        cleaned = df.copy()
        cleaned[x_col] = pd.to_numeric(cleaned[x_col], errors="coerce")
        cleaned[y_col] = pd.to_numeric(cleaned[y_col], errors="coerce")
        cleaned[date_col] = pd.to_datetime(cleaned[date_col], errors="coerce",
                                           format=self.config["date_format"]).dt.normalize()
        cleaned[id_col] = pd.to_numeric(cleaned[id_col], errors="coerce")

        finite = np.isfinite(cleaned[x_col]) & np.isfinite(cleaned[y_col])
        valid = finite & cleaned[date_col].notna() & cleaned[id_col].notna()
        dropped = int((~valid).sum())
        if dropped:
            logger.warning(f"Dropped {dropped} incidents with missing coordinates, dates or ids")
        cleaned = cleaned[valid]

        duplicates = cleaned[id_col].duplicated()
        if duplicates.any():
            logger.warning(f"Dropped {int(duplicates.sum())} incidents with duplicate ids")
            cleaned = cleaned[~duplicates]

        cleaned[id_col] = cleaned[id_col].astype(np.int64)
        return cleaned.reset_index(drop=True)

    def project_coordinates(self, df: pd.DataFrame, source_crs: Any = None,
                            target_crs: Any = None) -> pd.DataFrame:
        """Reproject incident coordinates into the metric analysis CRS as x/y columns"""
        source_crs = source_crs or self.config["source_crs"]
        target_crs = target_crs or self.config["projected_crs"]

        gdf = gpd.GeoDataFrame(
            df,
            geometry=gpd.points_from_xy(df[self.config["x_column"]], df[self.config["y_column"]]),
            crs=source_crs
        ).to_crs(target_crs)

        projected = pd.DataFrame(gdf.drop(columns="geometry"))
        projected["x"] = gdf.geometry.x.to_numpy()
        projected["y"] = gdf.geometry.y.to_numpy()
        return projected

    def to_events(self, df: pd.DataFrame) -> pd.DataFrame:
        """Event table with the id/x/y/date columns of the analysis core"""
        events = pd.DataFrame({
            "id": df[self.config["id_column"]].to_numpy(),
            "x": df["x"].to_numpy(),
            "y": df["y"].to_numpy(),
            "date": pd.to_datetime(df[self.config["date_column"]]).to_numpy()
        }, columns=EVENT_COLUMNS)
        return events.sort_values(["date", "id"], kind="stable").reset_index(drop=True)

    def to_event_store(self, df: pd.DataFrame) -> EventStore:
        return EventStore(self.to_events(df))

    def get_data_summary(self, events: pd.DataFrame) -> Dict[str, Any]:
        """Summary statistics of an event table"""
        if events.empty:
            return {"total_events": 0}
        dates = pd.to_datetime(events["date"])
        return {
            "total_events": len(events),
            "date_range": {
                "start": dates.min().date().isoformat(),
                "end": dates.max().date().isoformat()
            },
            "days_covered": int((dates.max() - dates.min()).days) + 1,
            "events_per_weekday": dates.dt.day_name().value_counts().to_dict(),
            "extent": {
                "min_x": float(events["x"].min()),
                "max_x": float(events["x"].max()),
                "min_y": float(events["y"].min()),
                "max_y": float(events["y"].max())
            }
        }

    def export_processed_data(self, events: pd.DataFrame, filename: str = None,
                              profile: str = "default", output_dir=None) -> str:
        """Export the event table to CSV"""
        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = FILE_PATTERNS["processed_events"].format(profile=profile, timestamp=timestamp)

        output_dir = Path(output_dir or PROCESSED_DATA_DIR)
        output_dir.mkdir(parents=True, exist_ok=True)
        filepath = output_dir / filename
        events.to_csv(filepath, index=False)

        logger.info(f"Processed events exported to {filepath}")
        return str(filepath)

    def process_incidents(self, path: Union[str, Path], category: Optional[str] = None,
                          start: Optional[Any] = None, end: Optional[Any] = None,
                          lookup: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """Complete ingestion pipeline from raw CSV to the event table"""
        logger.info("Loading incident data...")
        df = self.load_incidents(path)

        if lookup is not None:
            logger.info("Translating category codes...")
            df = self.translate_categories(df, lookup)

        logger.info("Filtering incidents...")
        df = self.filter_incidents(df, category=category, start=start, end=end)

        logger.info("Cleaning incidents...")
        df = self.clean_incidents(df)
        if df.empty:
            raise InputError(f"No incidents left after filtering (category={category}, window={start}..{end})")

        logger.info("Projecting coordinates...")
        df = self.project_coordinates(df)

        events = self.to_events(df)
        logger.info(f"Data summary: {self.get_data_summary(events)}")

        self.processed_data = events
        return events
