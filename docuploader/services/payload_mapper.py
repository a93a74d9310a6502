"""Payload mappers for upload API operations."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..models import UploadableItem, strip_extension

DATE_TAKEN_FORMAT = "%Y-%m-%d %H:%M:%S"


class UploadPayloadMapper:
    """Converts queue items to API payloads."""

    @staticmethod
    def format_date_taken(value) -> Optional[str]:
        """Render as 'YYYY-MM-DD HH:MM:SS' in local time, None when unusable."""
        if not isinstance(value, datetime):
            return None
        if value.tzinfo is not None:
            value = value.astimezone().replace(tzinfo=None)
        try:
            return value.strftime(DATE_TAKEN_FORMAT)
        except ValueError:
            return None

    @staticmethod
    def docname(item: UploadableItem) -> str:
        name = (item.edited_file_name or "").strip()
        return name or strip_extension(item.file.name)

    @classmethod
    def upload_form(
        cls,
        item: UploadableItem,
        parent_id: Optional[str] = None,
        event_id: Optional[int] = None,
    ) -> Dict[str, str]:
        form = {
            "docname": cls.docname(item),
            "abstract": "",
        }
        if parent_id is not None:
            form["parent_id"] = str(parent_id)
        if event_id is not None:
            form["event_id"] = str(event_id)

        date_taken = cls.format_date_taken(item.edited_date_taken)
        if date_taken:
            form["date_taken"] = date_taken
        return form

    @staticmethod
    def docnumbers_payload(docnumbers: Iterable[int]) -> Dict[str, List[int]]:
        return {"docnumbers": sorted(int(d) for d in docnumbers)}

    @staticmethod
    def error_message(body: Any) -> Optional[str]:
        """Best message a response body carries, if any."""
        if not isinstance(body, dict):
            return None
        for key in ("error", "message"):
            value = body.get(key)
            if value:
                return str(value)
        return None
