"""Shared helpers."""
from .events import EventEmitter, ItemProgress

__all__ = ["EventEmitter", "ItemProgress"]
