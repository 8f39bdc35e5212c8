"""
Projection helpers for pymotum.

State-space models are fitted in a planar, metric coordinate system. Each track
gets an Azimuthal Equidistant (AEQD) projection centred on its own centroid, in
kilometres, which keeps distances accurate over the spatial extent of a single
animal track at any latitude (including polar tracks and tracks crossing the
antimeridian).
"""

from typing import Tuple

import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

from pymotum.exceptions import ProjectionError

WGS84 = "EPSG:4326"

# ========== AEQD Projection Transformer Cache ==========
# Key: (rounded_lat, rounded_lon, precision) -> (forward_transformer, inverse_transformer)
_transformer_cache = {}


def aeqd_proj_string(cen_lat: float, cen_lon: float) -> str:
    """PROJ string of a kilometre AEQD projection centred on (cen_lat, cen_lon)."""
    return f"+proj=aeqd +lat_0={cen_lat:.9f} +lon_0={cen_lon:.9f} +datum=WGS84 +units=km +no_defs"


def get_aeqd_transformer(cen_lat: float, cen_lon: float, precision: int = 6):
    """
    Return cached AEQD Transformer pair for a centroid rounded at given precision.

    Returns
    -------
    (forward, inverse) : tuple of pyproj.Transformer
        forward maps (lon, lat) -> (x, y) km, inverse maps back.
    """
    key = (round(cen_lat, precision), round(cen_lon, precision), precision)
    t = _transformer_cache.get(key)
    if t is not None:
        return t

    proj = aeqd_proj_string(key[0], key[1])
    fwd = Transformer.from_crs(WGS84, proj, always_xy=True)
    inv = Transformer.from_crs(proj, WGS84, always_xy=True)
    _transformer_cache[key] = (fwd, inv)
    return fwd, inv


def spherical_centroid(lon: np.ndarray, lat: np.ndarray) -> Tuple[float, float]:
    """
    Centroid of points on the sphere as (lat, lon) in degrees.

    Averages unit vectors instead of raw degrees so tracks spanning the
    antimeridian get a sensible centre.
    """
    lon_r = np.radians(np.asarray(lon, dtype=float))
    lat_r = np.radians(np.asarray(lat, dtype=float))
    x = np.mean(np.cos(lat_r) * np.cos(lon_r))
    y = np.mean(np.cos(lat_r) * np.sin(lon_r))
    z = np.mean(np.sin(lat_r))
    cen_lon = np.degrees(np.arctan2(y, x))
    cen_lat = np.degrees(np.arctan2(z, np.hypot(x, y)))
    return float(cen_lat), float(cen_lon)


def project_track(lon: np.ndarray, lat: np.ndarray):
    """
    Project one track to its own AEQD plane.

    Returns
    -------
    x, y : np.ndarray
        Planar coordinates in km.
    centre : tuple
        (cen_lat, cen_lon) used for the projection; pass it to ``unproject``.
    """
    cen_lat, cen_lon = spherical_centroid(lon, lat)
    fwd, _ = get_aeqd_transformer(cen_lat, cen_lon)
    x, y = fwd.transform(np.asarray(lon, dtype=float), np.asarray(lat, dtype=float))
    return np.asarray(x, dtype=float), np.asarray(y, dtype=float), (cen_lat, cen_lon)


def unproject(x: np.ndarray, y: np.ndarray, centre: Tuple[float, float]):
    """Inverse of ``project_track``: AEQD km back to (lon, lat) degrees."""
    _, inv = get_aeqd_transformer(centre[0], centre[1])
    lon, lat = inv.transform(np.asarray(x, dtype=float), np.asarray(y, dtype=float))
    return np.asarray(lon, dtype=float), np.asarray(lat, dtype=float)


def validate_crs(projection) -> CRS:
    """
    Parse a projection (PROJ string, EPSG code, WKT or CRS) for rendering.

    Raises
    ------
    ProjectionError
        If pyproj cannot interpret the projection or it is a geocentric CRS.
    """
    try:
        crs = CRS.from_user_input(projection)
    except CRSError as exc:
        raise ProjectionError(f"Invalid map projection {projection!r}: {exc}") from exc
    if crs.is_geocentric:
        raise ProjectionError(f"Unsupported geocentric projection {projection!r}")
    return crs
