"""Utility functions for the backend."""

from workhaven.utils.geo import bounding_box, composite_key, haversine_meters

__all__ = ["bounding_box", "composite_key", "haversine_meters"]
