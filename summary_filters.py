"""Preview filtering of ``summarize`` tables for reporting and plotting."""
from __future__ import annotations

from typing import Optional

import pandas as pd

DEFAULT_SORT_COLUMN = "rate"


def build_summary_preview(
    df: Optional[pd.DataFrame],
    *,
    observed_only: bool = False,
    top_n: Optional[int] = None,
    sort_by: Optional[str] = DEFAULT_SORT_COLUMN,
) -> pd.DataFrame:
    """Return a filtered preview of a summary table.

    Parameters
    ----------
    df:
        An area (one row per altitude bin) or track (one row per sample)
        ``summarize`` table.
    observed_only:
        Drop rows without observations: zero ``count`` for area tables, zero
        ``density`` for track tables.
    top_n:
        Keep only the first ``top_n`` rows after sorting.
    sort_by:
        Column to sort by in descending order; ``None`` keeps the input order.
        A missing column yields an empty preview.
    """

    if df is None:
        return pd.DataFrame()
    if df.empty:
        return df.iloc[0:0]

    preview_df = df
    if observed_only:
        column = "count" if "count" in df.columns else "density"
        if column not in df.columns:
            preview_df = preview_df.iloc[0:0]
        else:
            preview_df = preview_df.loc[preview_df[column] > 0]

    if sort_by is not None:
        if sort_by not in df.columns:
            preview_df = preview_df.iloc[0:0]
        else:
            preview_df = preview_df.sort_values(sort_by, ascending=False, kind="stable")

    if top_n is not None:
        preview_df = preview_df.head(max(int(top_n), 0))

    return preview_df.copy()
