import numpy as np
import pandas as pd
from pathlib import Path

from nhpp.covariates import make_covariate
from nhpp.errors import MissingPrerequisiteData
from nhpp.likelihood import EventData

HOURS_PER_YEAR = 24 * 365.25


def hours_to_years(hours):
    return np.asarray(hours, dtype=float) / HOURS_PER_YEAR


def _read_csv(csv_path):
    p = Path(csv_path)
    if not p.exists():
        raise MissingPrerequisiteData(f"Input file not found: {p}")
    return pd.read_csv(p)


def load_events(csv_path, start_time=None, end_time=None, gap_hours=0.0):
    """
    读取风暴事件表：'startyear'（或 't'）为小数年开始时刻，可选 'duration'（小时）。
    每个事件的持续时间加上 gap_hours 作为死区。
    """
    df = _read_csv(csv_path)
    df.columns = [c.strip().lower() for c in df.columns]
    col = "startyear" if "startyear" in df.columns else "t"
    if col not in df.columns:
        raise ValueError("CSV must contain column 'startyear' or 't' (event start time in years).")
    t = df[col].values.astype(float)
    if np.any(np.diff(t) <= 0):
        raise ValueError(f"'{col}' must be strictly increasing.")
    if "duration" in df.columns:
        hours = df["duration"].values.astype(float) + gap_hours
    else:
        hours = np.full(len(t), float(gap_hours))
    return EventData(t, hours_to_years(hours), start_time=start_time, end_time=end_time)


def load_covariate(csv_path, how="cyclic"):
    df = _read_csv(csv_path)
    df.columns = [c.strip().lower() for c in df.columns]
    if "year" not in df.columns or "value" not in df.columns:
        raise ValueError("Covariate CSV must contain columns 'year' and 'value'.")
    return make_covariate(df["year"].values, df["value"].values, how=how)


def ensure_output_dir(path='output'):
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return str(p)
