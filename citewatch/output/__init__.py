"""
Citewatch - Output Package

Presentation-boundary mapping of snapshots to display rows.
"""

from .display import (
    DisplayStatus,
    RowState,
    derive_display_status,
    to_display_row,
    merge_display_rows,
    summarize,
    sentiment_label,
)

__all__ = [
    "DisplayStatus",
    "RowState",
    "derive_display_status",
    "to_display_row",
    "merge_display_rows",
    "summarize",
    "sentiment_label",
]
