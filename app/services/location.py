import math
from datetime import datetime
from typing import List, Optional, Tuple

# Radius of the Earth in meters
EARTH_RADIUS_METERS = 6371000


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in meters (haversine formula)
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) * math.sin(delta_lat / 2) +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) * math.sin(delta_lon / 2))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def has_significant_movement(previous: Tuple[float, float], current: Tuple[float, float],
                             threshold_meters: float = 50) -> bool:
    """Did the device move at least ``threshold_meters`` between two fixes?"""
    distance = calculate_distance(previous[0], previous[1], current[0], current[1])
    return distance >= threshold_meters


def validate_coordinates(latitude: float, longitude: float, accuracy: Optional[float] = None) -> List[str]:
    """Return a list of problems with a GPS fix (empty when valid)"""
    errors = []
    if latitude is None or not -90 <= latitude <= 90:
        errors.append("Invalid latitude. Must be between -90 and 90.")
    if longitude is None or not -180 <= longitude <= 180:
        errors.append("Invalid longitude. Must be between -180 and 180.")
    if accuracy is not None and accuracy < 0:
        errors.append("Invalid accuracy. Must be a positive number.")
    return errors


def accuracy_warning(accuracy: Optional[float]) -> Optional[str]:
    """Poor accuracy is accepted but reported back to the caller"""
    if accuracy is not None and accuracy > 100:
        return f"Poor GPS accuracy ({accuracy:.0f} m). Location may be inaccurate."
    return None


def format_distance(distance_meters: float) -> str:
    """Human readable distance"""
    if distance_meters < 1000:
        return f"{distance_meters:.0f} m"
    else:
        return f"{distance_meters/1000:.1f} km"


def make_path_point(latitude: float, longitude: float, timestamp: datetime,
                    accuracy: Optional[float] = None, battery_level: Optional[float] = None) -> dict:
    """Path entry as persisted in ``daily_attendance.path_data``; timestamp is naive UTC"""
    return {
        "latitude": latitude,
        "longitude": longitude,
        "accuracy": accuracy,
        "batteryLevel": battery_level,
        "timestamp": timestamp.isoformat(),
    }


def path_point_time(point: dict) -> datetime:
    return datetime.fromisoformat(point["timestamp"])


def append_path_point(path: List[dict], point: dict) -> Optional[Tuple[List[dict], float]]:
    """
    Append ``point`` to ``path`` if it is newer than the last entry.

    Returns the new path and the distance added from the previous sample, or
    None when the point is a duplicate or arrived out of order.
    """
    if path:
        last = path[-1]
        if path_point_time(point) <= path_point_time(last):
            return None
        added = calculate_distance(last["latitude"], last["longitude"],
                                   point["latitude"], point["longitude"])
    else:
        added = 0.0
    return path + [point], added
