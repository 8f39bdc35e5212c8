"""
Configuration structures for pymotum.

All pipeline steps take an immutable configuration object plus keyword
overrides, so a workflow run carries no hidden global state. Each config can be
built from a plain mapping (e.g. parsed JSON) with ``from_dict``.
"""

from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

SSM_MODELS = ("rw", "crw", "mp")
MPM_MODELS = ("mpm", "jmpm")


def _freeze(mapping: Optional[Mapping[str, float]]) -> Mapping[str, float]:
    return MappingProxyType(dict(mapping or {}))


class _FromDict:
    """Mixin giving dataclasses a tolerant ``from_dict`` / ``with_overrides``."""

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]] = None):
        values = dict(values or {})
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown {cls.__name__} option(s): {sorted(unknown)}")
        return cls(**values)

    def with_overrides(self, **overrides):
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown {type(self).__name__} option(s): {sorted(unknown)}")
        return replace(self, **overrides)


@dataclass(frozen=True)
class SSMConfig(_FromDict):
    """
    Options for ``fit_ssm``.

    Parameters
    ----------
    model : {'rw', 'crw', 'mp'}
        Process model: random walk, correlated random walk, or joint
        move-persistence model.
    time_step : float
        Prediction interval in hours.
    vmax : float
        Maximum plausible travel speed (m/s) for the speed filter.
    ang : tuple of float
        Spike angles (degrees) for the angle/distance filter.
    distlim : tuple of float
        Leg lengths (metres) paired with ``ang``.
    spdf : bool
        Apply the speed/distance/angle filter.
    min_dt : float
        Minimum seconds between consecutive kept observations.
    verbose : int
        0 silent, 1 progress bar, 2 progress bar and optimizer trace.
    fixed_parameters : mapping
        Parameter name -> value held fixed during estimation, e.g.
        ``{"rho_o": 0.0}`` disables the observation-error correlation.
    max_iter : int
        Optimizer iteration limit per track.
    optimizer : str
        ``scipy.optimize.minimize`` method.
    """

    model: str = "crw"
    time_step: float = 6.0
    vmax: float = 5.0
    ang: Tuple[float, float] = (15.0, 25.0)
    distlim: Tuple[float, float] = (2500.0, 5000.0)
    spdf: bool = True
    min_dt: float = 0.0
    verbose: int = 0
    fixed_parameters: Mapping[str, float] = field(default_factory=dict)
    max_iter: int = 500
    optimizer: str = "L-BFGS-B"

    def __post_init__(self):
        if self.model not in SSM_MODELS:
            raise ValueError(f"model must be one of {SSM_MODELS}, got {self.model!r}")
        if not self.time_step > 0:
            raise ValueError("time_step must be positive (hours)")
        if not self.vmax > 0:
            raise ValueError("vmax must be positive (m/s)")
        if self.min_dt < 0:
            raise ValueError("min_dt must be >= 0 seconds")
        if len(self.ang) != len(self.distlim):
            raise ValueError("ang and distlim must have the same length")
        object.__setattr__(self, "ang", tuple(float(a) for a in self.ang))
        object.__setattr__(self, "distlim", tuple(float(d) for d in self.distlim))
        object.__setattr__(self, "fixed_parameters", _freeze(self.fixed_parameters))


@dataclass(frozen=True)
class MPMConfig(_FromDict):
    """
    Options for ``fit_mpm``.

    ``model='mpm'`` estimates every track independently, ``'jmpm'`` pools the
    move-persistence variability ``sigma_g`` across all tracks.
    """

    model: str = "mpm"
    what: str = "predicted"
    verbose: int = 0
    max_iter: int = 500
    optimizer: str = "L-BFGS-B"

    def __post_init__(self):
        if self.model not in MPM_MODELS:
            raise ValueError(f"model must be one of {MPM_MODELS}, got {self.model!r}")
        if self.what not in ("predicted", "fitted"):
            raise ValueError("what must be 'predicted' or 'fitted'")


@dataclass(frozen=True)
class MapConfig(_FromDict):
    """Options for the cartographic renderer."""

    projection: str = "+proj=laea +lat_0=-60 +lon_0=70 +datum=WGS84 +units=km +no_defs"
    bbox: Optional[Tuple[float, float, float, float]] = None
    basemap: Optional[str] = None
    color_by: Optional[str] = "g"
    save_path: Optional[str] = None

    def __post_init__(self):
        if self.bbox is not None:
            if len(self.bbox) != 4:
                raise ValueError("bbox must be (min_lon, min_lat, max_lon, max_lat)")
            object.__setattr__(self, "bbox", tuple(float(b) for b in self.bbox))


@dataclass(frozen=True)
class PipelineConfig:
    """Bundle of step configurations for ``run_pipeline``."""

    ssm: SSMConfig = field(default_factory=SSMConfig)
    mpm: Optional[MPMConfig] = None
    map: Optional[MapConfig] = None
    run_osar: bool = False

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]] = None) -> "PipelineConfig":
        values = dict(values or {})
        unknown = set(values) - {"ssm", "mpm", "map", "run_osar"}
        if unknown:
            raise ValueError(f"Unknown PipelineConfig option(s): {sorted(unknown)}")
        mpm = values.get("mpm")
        map_ = values.get("map")
        return cls(
            ssm=SSMConfig.from_dict(values.get("ssm")),
            mpm=MPMConfig.from_dict(mpm) if mpm is not None else None,
            map=MapConfig.from_dict(map_) if map_ is not None else None,
            run_osar=bool(values.get("run_osar", False)),
        )
