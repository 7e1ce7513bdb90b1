"""
Campus reference data: building list with coordinates and nearest-building lookup.
"""
import math
from typing import Dict, List, Optional, Tuple


CAMPUS_BUILDINGS: List[Dict] = [
    {"name": "Gore Hall", "lat": 39.6812, "lng": -75.7528},
    {"name": "Smith Hall", "lat": 39.6800, "lng": -75.7520},
    {"name": "Memorial Hall", "lat": 39.6795, "lng": -75.7515},
    {"name": "Perkins Student Center", "lat": 39.6790, "lng": -75.7535},
    {"name": "Morris Library", "lat": 39.6805, "lng": -75.7530},
    {"name": "Trabant University Center", "lat": 39.6783, "lng": -75.7510},
    {"name": "ISE Lab", "lat": 39.6778, "lng": -75.7505},
    {"name": "Evans Hall", "lat": 39.6815, "lng": -75.7540},
    {"name": "Brown Lab", "lat": 39.6808, "lng": -75.7525},
    {"name": "Colburn Lab", "lat": 39.6803, "lng": -75.7518},
    {"name": "Spencer Lab", "lat": 39.6798, "lng": -75.7512},
    {"name": "DuPont Hall", "lat": 39.6810, "lng": -75.7535},
    {"name": "Sharp Lab", "lat": 39.6807, "lng": -75.7522},
    {"name": "Purnell Hall", "lat": 39.6792, "lng": -75.7508},
    {"name": "Kirkbride Hall", "lat": 39.6788, "lng": -75.7502},
    {"name": "Mitchell Hall", "lat": 39.6785, "lng": -75.7530},
    {"name": "Willard Hall", "lat": 39.6813, "lng": -75.7532},
    {"name": "STAR Campus", "lat": 39.6740, "lng": -75.7460},
    {"name": "Carpenter Sports Building", "lat": 39.6760, "lng": -75.7550},
    {"name": "Christiana Towers", "lat": 39.6710, "lng": -75.7490},
    {"name": "Campus Center", "lat": 39.6780, "lng": -75.7506},
]

_BY_NAME = {b["name"]: b for b in CAMPUS_BUILDINGS}

EARTH_RADIUS_M = 6371000


def is_known_building(name: Optional[str]) -> bool:
    return bool(name) and name in _BY_NAME


def building_coordinates(name: str) -> Optional[Tuple[float, float]]:
    building = _BY_NAME.get(name)
    if not building:
        return None
    return building["lat"], building["lng"]


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def nearest_building(lat: float, lng: float, max_distance_m: float = 200) -> Optional[Tuple[str, float]]:
    """
    Find the closest campus building to a coordinate.

    Returns:
        (building name, distance in meters), or None when nothing is within max_distance_m
    """
    nearest: Optional[Tuple[str, float]] = None
    for building in CAMPUS_BUILDINGS:
        dist = haversine_m(lat, lng, building["lat"], building["lng"])
        if nearest is None or dist < nearest[1]:
            nearest = (building["name"], dist)
    if nearest and nearest[1] > max_distance_m:
        return None
    return nearest
