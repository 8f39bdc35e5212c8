"""
Visualization module for pymotum.

Static figures are drawn with matplotlib (and geopandas for projected maps);
interactive maps use Folium. Every function is purely presentational: it
returns the figure/axes/map and carries no state forward.

- ``plot_ssm``: fitted/predicted locations as coordinate time series with
  uncertainty bands, or as a 2-D track
- ``plot_osar``: residual diagnostics (time series, QQ, autocorrelation)
- ``plot_mpm``: move-persistence time series
- ``map_tracks``: projected map of a combined table over a basemap layer
- ``interactive_map``: Folium map with tracks coloured by move persistence
"""

from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import folium
import geopandas as gpd
import matplotlib
import numpy as np
import pandas as pd
from branca.element import MacroElement, Template
from matplotlib import pyplot as plt
from matplotlib.colors import Normalize, rgb2hex
from scipy import stats
from shapely.geometry import LineString, Point, box

from pymotum.exceptions import ProjectionError
from pymotum.modelling.mpm import MPMFit
from pymotum.modelling.projection import validate_crs
from pymotum.modelling.ssm import SSMFit


def _selected(fit: SSMFit, ids: Optional[Iterable[str]]):
    wanted = set(ids) if ids is not None else None
    return [t for t in fit.tracks if wanted is None or t.id in wanted]


def _save(fig, save_path):
    if save_path is not None:
        fig.savefig(Path(save_path), dpi=150, bbox_inches="tight")
    return fig


# ======================== SSM Plots ========================


def plot_ssm(
    fit: SSMFit,
    what: str = "predicted",
    kind: str = "timeseries",
    ids: Optional[Iterable[str]] = None,
    save_path: Optional[Union[str, Path]] = None,
):
    """
    Plot state-space fits against the observations.

    Parameters
    ----------
    fit : SSMFit
        Result of ``fit_ssm``.
    what : {'predicted', 'fitted'}, default='predicted'
        Which smoothed locations to draw.
    kind : {'timeseries', 'map'}, default='timeseries'
        'timeseries': x and y (km) against time with a +/- 2 SE band, kept
        observations as points and prefilter rejections as crosses.
        'map': every track's longitude and latitude on one set of axes.
    ids : iterable of str, optional
        Restrict to these tracks.
    save_path : str or Path, optional
        Also write the figure to this file.

    Returns
    -------
    matplotlib.figure.Figure
    """
    if what not in ("predicted", "fitted"):
        raise ValueError("what must be 'predicted' or 'fitted'")
    if kind not in ("timeseries", "map"):
        raise ValueError("kind must be 'timeseries' or 'map'")
    tracks = _selected(fit, ids)
    if not tracks:
        raise ValueError("No fitted tracks to plot.")

    if kind == "timeseries":
        fig, axes = plt.subplots(len(tracks), 2, figsize=(11, 3 * len(tracks)), squeeze=False)
        for row, track in zip(axes, tracks):
            est = getattr(track, what)
            obs = track.data
            kept = obs["keep"].to_numpy()
            obs_xy = track._problem.obs_xy
            for ax, coord, col in zip(row, ("x", "y"), (0, 1)):
                ax.fill_between(
                    est["date"], est[coord] - 2 * est[f"{coord}_se"], est[coord] + 2 * est[f"{coord}_se"],
                    color="tab:blue", alpha=0.25, linewidth=0,
                )
                ax.plot(est["date"], est[coord], color="tab:blue", linewidth=1, label=what)
                ax.scatter(track._problem.obs["date"], obs_xy[:, col], s=6, color="tab:orange", label="observed")
                ax.set_ylabel(f"{coord} (km)")
                ax.set_title(f"{track.id} - {coord}")
            if not kept.all():
                # Rejected fixes have no planar coordinates; show them on the date axis only
                for ax in row:
                    ax.scatter(obs.loc[~kept, "date"], np.full((~kept).sum(), ax.get_ylim()[0]),
                               marker="x", s=12, color="grey", label="rejected")
            row[0].legend(loc="best", fontsize=8)
        fig.autofmt_xdate()
    else:
        fig, ax = plt.subplots(figsize=(7, 7))
        cmap = matplotlib.colormaps["tab10"]
        for k, track in enumerate(tracks):
            est = getattr(track, what)
            color = cmap(k % 10)
            ax.scatter(track.fitted["lon"], track.fitted["lat"], s=4, color=color, alpha=0.4)
            ax.plot(est["lon"], est["lat"], color=color, linewidth=1, label=track.id)
        ax.set_xlabel("Longitude")
        ax.set_ylabel("Latitude")
        ax.legend(loc="best", fontsize=8)
    fig.tight_layout()
    return _save(fig, save_path)


# ======================== Residual Diagnostics ========================


def _acf(values: np.ndarray, max_lag: int) -> np.ndarray:
    centred = values - values.mean()
    denom = np.sum(centred ** 2)
    if denom == 0:
        return np.zeros(max_lag + 1)
    return np.array([np.sum(centred[lag:] * centred[: len(centred) - lag]) / denom for lag in range(max_lag + 1)])


def plot_osar(
    res: pd.DataFrame,
    kind: str = "qq",
    max_lag: int = 20,
    save_path: Optional[Union[str, Path]] = None,
):
    """
    Residual diagnostic panels, one row per track and one column per coordinate.

    Parameters
    ----------
    res : pd.DataFrame
        Output of ``osar``.
    kind : {'ts', 'qq', 'acf'}, default='qq'
        Residuals over time, normal QQ plot, or autocorrelation with
        approximate 95% bounds.
    max_lag : int, default=20
        Largest lag for 'acf'.
    save_path : str or Path, optional
        Also write the figure to this file.

    Returns
    -------
    matplotlib.figure.Figure
    """
    if kind not in ("ts", "qq", "acf"):
        raise ValueError("kind must be 'ts', 'qq' or 'acf'")
    if res.empty:
        raise ValueError("No residuals to plot.")

    ids = list(dict.fromkeys(res["id"]))
    fig, axes = plt.subplots(len(ids), 2, figsize=(10, 3 * len(ids)), squeeze=False)
    for row, track_id in zip(axes, ids):
        for ax, coord in zip(row, ("x", "y")):
            sel = res[(res["id"] == track_id) & (res["coord"] == coord)]
            r = sel["residual"].to_numpy(dtype=float)
            finite = np.isfinite(r)
            if kind == "ts":
                ax.axhline(0.0, color="grey", linewidth=0.8)
                ax.plot(sel["date"], r, marker="o", markersize=2, linewidth=0.6)
                ax.set_ylabel("residual")
            elif kind == "qq":
                stats.probplot(r[finite], dist="norm", plot=ax)
            else:
                lags = min(max_lag, max(1, finite.sum() - 1))
                acf = _acf(r[finite], lags)
                bound = 1.96 / np.sqrt(max(finite.sum(), 1))
                ax.vlines(np.arange(lags + 1), 0, acf)
                ax.axhline(bound, linestyle="--", color="tab:blue", linewidth=0.8)
                ax.axhline(-bound, linestyle="--", color="tab:blue", linewidth=0.8)
                ax.set_xlabel("lag")
            ax.set_title(f"{track_id} - {coord}")
    fig.tight_layout()
    return _save(fig, save_path)


# ======================== Move Persistence ========================


def plot_mpm(
    mpm: MPMFit,
    ids: Optional[Iterable[str]] = None,
    save_path: Optional[Union[str, Path]] = None,
):
    """
    Move-persistence ``g`` against time with a 95% band (from the logit scale),
    one panel per track.

    Returns
    -------
    matplotlib.figure.Figure
    """
    wanted = set(ids) if ids is not None else None
    tracks = [t for t in mpm.tracks if wanted is None or t.id in wanted]
    if not tracks:
        raise ValueError("No move-persistence estimates to plot.")

    fig, axes = plt.subplots(len(tracks), 1, figsize=(10, 2.5 * len(tracks)), squeeze=False)
    for ax, track in zip(axes[:, 0], tracks):
        f = track.fitted
        lo = 1.0 / (1.0 + np.exp(-(f["logit_g"] - 1.96 * f["logit_g_se"])))
        hi = 1.0 / (1.0 + np.exp(-(f["logit_g"] + 1.96 * f["logit_g_se"])))
        ax.fill_between(f["date"], lo, hi, color="tab:blue", alpha=0.25, linewidth=0)
        ax.plot(f["date"], f["g"], color="tab:blue", linewidth=1)
        ax.set_ylim(0, 1)
        ax.set_ylabel("g")
        ax.set_title(f"{track.id}{' (pooled sigma_g)' if track.pooled else ''}")
    fig.autofmt_xdate()
    fig.tight_layout()
    return _save(fig, save_path)


# ======================== Projected Maps ========================


def _load_basemap(basemap) -> Optional[gpd.GeoDataFrame]:
    if basemap is None:
        return None
    if isinstance(basemap, gpd.GeoDataFrame):
        layer = basemap
    else:
        layer = gpd.read_file(basemap)
    if layer.crs is None:
        layer = layer.set_crs("EPSG:4326")
    return layer


def map_tracks(
    table: pd.DataFrame,
    projection: str = "+proj=laea +lat_0=-60 +lon_0=70 +datum=WGS84 +units=km +no_defs",
    bbox: Optional[Sequence[float]] = None,
    basemap=None,
    color_by: Optional[str] = "g",
    cmap: str = "viridis",
    ax=None,
    save_path: Optional[Union[str, Path]] = None,
):
    """
    Project a location table and draw it over a basemap polygon layer.

    Parameters
    ----------
    table : pd.DataFrame
        Any table with ``id``, ``lon``, ``lat`` (e.g. from ``join``).
    projection : str
        Target map projection (PROJ string, 'EPSG:xxxx', WKT).
    bbox : sequence of 4 floats, optional
        (min_lon, min_lat, max_lon, max_lat) map extent; the basemap is clipped
        to it.
    basemap : GeoDataFrame or path, optional
        Land polygons (any vector format geopandas can read). Without one, only
        the tracks are drawn.
    color_by : str or None, default='g'
        Column used to colour points; falls back to per-track colours when
        missing or None.
    cmap : str, default='viridis'
        Matplotlib colormap for ``color_by``.
    ax : matplotlib Axes, optional
        Draw into an existing axes.
    save_path : str or Path, optional
        Also write the figure to this file.

    Returns
    -------
    matplotlib.axes.Axes

    Raises
    ------
    ProjectionError
        If the projection cannot be interpreted or the data cannot be
        transformed into it.
    """
    crs = validate_crs(projection)
    if not {"lon", "lat"}.issubset(table.columns):
        raise ValueError("table needs 'lon' and 'lat' columns")
    if table.empty:
        raise ValueError("No locations to map.")

    points = gpd.GeoDataFrame(
        table.drop(columns="geometry", errors="ignore").copy(),
        geometry=[Point(xy) for xy in zip(table["lon"], table["lat"])],
        crs="EPSG:4326",
    )
    try:
        points = points.to_crs(crs)
    except Exception as exc:
        raise ProjectionError(f"Cannot transform locations to {projection!r}: {exc}") from exc
    if not np.all(np.isfinite(points.geometry.x)) or not np.all(np.isfinite(points.geometry.y)):
        raise ProjectionError(f"Locations fall outside the valid domain of {projection!r}")

    if ax is None:
        _, ax = plt.subplots(figsize=(8, 8))

    # ========== Basemap ==========
    layer = _load_basemap(basemap)
    extent = None
    if bbox is not None:
        frame = gpd.GeoDataFrame(geometry=[box(*bbox).segmentize(0.5)], crs="EPSG:4326").to_crs(crs)
        extent = frame.total_bounds
        if layer is not None:
            layer = layer.to_crs("EPSG:4326").clip(box(*bbox))
    if layer is not None and len(layer):
        layer.to_crs(crs).plot(ax=ax, color="lightgrey", edgecolor="grey", linewidth=0.3)

    # ========== Tracks ==========
    track_cmap = matplotlib.colormaps["tab10"]
    for k, (track_id, grp) in enumerate(points.groupby("id", sort=False)):
        if len(grp) > 1:
            line = LineString(list(zip(grp.geometry.x, grp.geometry.y)))
            ax.plot(*line.xy, color=track_cmap(k % 10), linewidth=0.6, alpha=0.7)

    if color_by is not None and color_by in points.columns and points[color_by].notna().any():
        sc = ax.scatter(points.geometry.x, points.geometry.y, c=points[color_by], cmap=cmap, s=6,
                        norm=Normalize(vmin=0.0, vmax=1.0) if color_by == "g" else None)
        plt.colorbar(sc, ax=ax, shrink=0.6, label=color_by)
    else:
        for k, (track_id, grp) in enumerate(points.groupby("id", sort=False)):
            ax.scatter(grp.geometry.x, grp.geometry.y, s=6, color=track_cmap(k % 10), label=str(track_id))
        ax.legend(loc="best", fontsize=8)

    if extent is not None:
        ax.set_xlim(extent[0], extent[2])
        ax.set_ylim(extent[1], extent[3])
    ax.set_aspect("equal")
    ax.set_xticks([])
    ax.set_yticks([])

    if save_path is not None:
        _save(ax.figure, save_path)
    return ax


# ======================== Interactive Maps ========================


def interactive_map(
    table: pd.DataFrame,
    color_by: Optional[str] = "g",
    cmap: str = "viridis",
    names: Optional[dict] = None,
    tiles: str = "CartoDB positron",
    show_legend: bool = True,
    legend_name: str = "Tracks",
    zoom_start: int = 5,
    save_path: Optional[Union[str, Path]] = None,
) -> folium.Map:
    """
    Plot tracks on an interactive Folium map.

    Each track is drawn as a polyline in its own colour; when ``color_by`` is
    present, every location is added as a circle marker coloured by that column
    (move persistence by default, 0 = tortuous, 1 = directed).

    Parameters
    ----------
    table : pd.DataFrame
        Any table with ``id``, ``lon``, ``lat``.
    color_by : str or None, default='g'
        Column used for marker colours.
    cmap : str, default='viridis'
        Matplotlib colormap for markers.
    names : dict, optional
        Track id -> legend label.
    tiles : str, default='CartoDB positron'
        Folium tile layer.
    show_legend : bool, default=True
        Add a draggable legend listing the tracks.
    legend_name : str, default='Tracks'
        Legend title.
    zoom_start : int, default=5
        Initial zoom.
    save_path : str or Path, optional
        Write the map to an HTML file.

    Returns
    -------
    folium.Map
    """
    if table.empty:
        raise ValueError("No locations to map.")
    if not {"id", "lon", "lat"}.issubset(table.columns):
        raise ValueError("table needs 'id', 'lon' and 'lat' columns")

    lats = table["lat"].to_numpy(dtype=float)
    lons = table["lon"].to_numpy(dtype=float)
    _map = folium.Map([float(np.nanmean(lats)), float(np.nanmean(lons))], zoom_start=zoom_start, tiles=tiles)

    track_cmap = matplotlib.colormaps["tab10"]
    marker_cmap = matplotlib.colormaps[cmap]
    use_markers = color_by is not None and color_by in table.columns
    items = []

    for k, (track_id, grp) in enumerate(table.groupby("id", sort=False)):
        color_ = rgb2hex(track_cmap(k % 10))
        points_latlon = list(zip(grp["lat"].to_numpy(), grp["lon"].to_numpy()))
        label = (names or {}).get(track_id, str(track_id))
        layer = folium.FeatureGroup(name=label)
        folium.PolyLine(points_latlon, color=color_, weight=2, opacity=0.7).add_to(layer)

        if use_markers:
            for (lat, lon), value in zip(points_latlon, grp[color_by].to_numpy(dtype=float)):
                fill = "#999999" if not np.isfinite(value) else rgb2hex(marker_cmap(float(np.clip(value, 0, 1))))
                folium.CircleMarker(
                    [lat, lon], radius=3, color=fill, fill=True, fill_opacity=0.9, weight=0,
                    tooltip=f"{label}: {color_by}={value:.2f}" if np.isfinite(value) else label,
                ).add_to(layer)
        layer.add_to(_map)
        items.append((label, color_))

    if show_legend:
        __add_map_legend(_map, legend_name, items)
    folium.LayerControl().add_to(_map)

    if save_path is not None:
        _map.save(str(save_path))
    return _map


def __add_map_legend(m, title, items):
    """
    Add a draggable legend to a Folium map.

    ``items`` is a list of (name, hex colour) tuples.
    """
    item_template = "<li><span style='background:{};'></span>{}</li>"
    list_items = "\n".join([item_template.format(c, n) for (n, c) in items])

    template = """
    {{% macro html(this, kwargs) %}}
    <script src="https://code.jquery.com/jquery-1.12.4.js"></script>
    <script src="https://code.jquery.com/ui/1.12.1/jquery-ui.js"></script>
    <script>
      $( function() {{ $( "#maplegend" ).draggable(); }});
    </script>
    <div id='maplegend' class='maplegend'
        style='position: absolute; z-index:9999; border:2px solid grey;
        background-color:rgba(255, 255, 255, 0.8); border-radius:6px;
        padding: 10px; font-size:14px; right: 20px; bottom: 20px;'>
    <div class='legend-title'> {} </div>
    <div class='legend-scale'>
      <ul class='legend-labels'>
        {}
      </ul>
    </div>
    </div>
    <style type='text/css'>
      .maplegend .legend-title {{ text-align: left; margin-bottom: 5px; font-weight: bold; font-size: 90%; }}
      .maplegend .legend-scale ul {{ margin: 0; margin-bottom: 5px; padding: 0; float: left; list-style: none; }}
      .maplegend .legend-scale ul li {{ font-size: 80%; list-style: none; margin-left: 0; line-height: 18px; margin-bottom: 2px; }}
      .maplegend ul.legend-labels li span {{ display: block; float: left; height: 16px; width: 30px;
        margin-right: 5px; margin-left: 0; border: 1px solid #999; }}
    </style>
    {{% endmacro %}}""".format(title, list_items)

    macro = MacroElement()
    macro._template = Template(template)
    m.get_root().add_child(macro, name="map_legend")
