"""
Tests for plots and maps.
"""

import folium
import geopandas as gpd
import pytest
from matplotlib import pyplot as plt
from matplotlib.figure import Figure
from shapely.geometry import box

from pymotum.exceptions import ProjectionError
from pymotum.modelling import osar
from pymotum.utilities import join
from pymotum.utilities.visualization import interactive_map, map_tracks, plot_mpm, plot_osar, plot_ssm

LAEA = "+proj=laea +lat_0=-50 +lon_0=70 +datum=WGS84 +units=km +no_defs"


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def combined(crw_fit, crw_mpm):
    return join(crw_fit, crw_mpm)


class TestDiagnosticPlots:
    """Tests for plot_ssm, plot_osar and plot_mpm."""

    @pytest.mark.parametrize("kind", ["timeseries", "map"])
    def test_plot_ssm(self, crw_fit, kind):
        fig = plot_ssm(crw_fit, kind=kind)

        assert isinstance(fig, Figure)
        assert len(fig.axes) >= 1

    def test_plot_ssm_map_uses_geographic_axes(self, crw_fit):
        fig = plot_ssm(crw_fit, kind="map")
        ax = fig.axes[0]

        assert ax.get_xlabel() == "Longitude"
        assert ax.get_ylabel() == "Latitude"

    def test_plot_ssm_subset(self, crw_fit):
        fig = plot_ssm(crw_fit, what="fitted", ids=["sim02"])

        assert len(fig.axes) == 2

    def test_plot_ssm_bad_kind(self, crw_fit):
        with pytest.raises(ValueError):
            plot_ssm(crw_fit, kind="3d")

    @pytest.mark.parametrize("kind", ["ts", "qq", "acf"])
    def test_plot_osar(self, crw_fit, kind):
        fig = plot_osar(osar(crw_fit), kind=kind)

        assert len(fig.axes) == 2 * len(crw_fit.tracks)

    def test_plot_mpm(self, crw_mpm, tmp_path):
        path = tmp_path / "mpm.png"
        fig = plot_mpm(crw_mpm, save_path=path)

        assert len(fig.axes) == len(crw_mpm.tracks)
        assert path.exists()


class TestMapTracks:
    """Tests for the projected map renderer."""

    def test_invalid_projection(self, combined):
        with pytest.raises(ProjectionError):
            map_tracks(combined, projection="+proj=doesnotexist")

    def test_colour_by_g(self, combined, tmp_path):
        path = tmp_path / "map.png"
        ax = map_tracks(combined, projection=LAEA, save_path=path)

        assert path.exists()
        assert len(ax.collections) >= 1

    def test_basemap_and_bbox(self, combined):
        land = gpd.GeoDataFrame({"name": ["island"]}, geometry=[box(69.0, -51.0, 71.0, -49.0)], crs="EPSG:4326")
        bbox = (
            combined["lon"].min() - 1,
            combined["lat"].min() - 1,
            combined["lon"].max() + 1,
            combined["lat"].max() + 1,
        )
        ax = map_tracks(combined, projection=LAEA, bbox=bbox, basemap=land)

        x0, x1 = ax.get_xlim()
        assert x0 < x1

    def test_basemap_from_file(self, combined, tmp_path):
        land = gpd.GeoDataFrame(geometry=[box(69.0, -51.0, 71.0, -49.0)], crs="EPSG:4326")
        path = tmp_path / "land.geojson"
        land.to_file(path, driver="GeoJSON")

        ax = map_tracks(combined, projection="EPSG:3031", basemap=str(path), color_by=None)
        assert ax.get_legend() is not None

    def test_empty_table(self, combined):
        with pytest.raises(ValueError):
            map_tracks(combined.iloc[0:0], projection=LAEA)


class TestInteractiveMap:
    """Tests for the Folium map."""

    def test_returns_map(self, combined, tmp_path):
        path = tmp_path / "map.html"
        m = interactive_map(combined, save_path=path, names={"sim01": "Seal A"})

        assert isinstance(m, folium.Map)
        html = path.read_text()
        assert "Seal A" in html
        assert "maplegend" in html

    def test_without_g(self, crw_fit):
        m = interactive_map(crw_fit.tracks[0].predicted, color_by=None, show_legend=False)

        assert isinstance(m, folium.Map)
