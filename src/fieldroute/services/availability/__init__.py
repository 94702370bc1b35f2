"""Slot availability exports."""

from .service import Slot, SlotSearchResult, arrival_window, find_slots, recommend_slots

__all__ = ["find_slots", "recommend_slots", "arrival_window", "Slot", "SlotSearchResult"]
