"""Receiver-relative geometry: distance, bearing, grid squares."""

from .geomath import grid_to_latlon, haversine_km, haversine_km_many, initial_bearing_deg

__all__ = ['grid_to_latlon', 'haversine_km', 'haversine_km_many', 'initial_bearing_deg']
