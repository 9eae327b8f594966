"""Utility helpers."""

from wabot.utils.helpers import ensure_dir, get_data_path, get_workspace_path, today_date

__all__ = ["ensure_dir", "get_data_path", "get_workspace_path", "today_date"]
