"""
pymotum - A Python library for fitting movement models to animal telemetry.

pymotum turns irregular, error-prone tracking data (Argos, GPS, geolocation)
into regular, error-corrected tracks and behavioural indices.

Components
----------
- **preprocessing**: Loading, validation, prefiltering, segmentation
- **modelling**: State-space models, residual diagnostics, move persistence, simulation
- **utilities**: Extraction/joins, plots and maps
- **pipeline**: One-call workflow driven by ``PipelineConfig``

Quick Start
-----------
```python
import pymotum as pm

obs = pm.preprocessing.read_tracks(pm.sample_data_path())

# Regularise to 6-hourly locations
fit = pm.modelling.fit_ssm(obs, model="crw", time_step=6, vmax=4)
fit.summary()

# Diagnostics
res = pm.modelling.osar(fit)
pm.utilities.visualization.plot_osar(res, kind="qq")

# Behaviour, pooled across tracks
mp = pm.modelling.fit_mpm(fit, model="jmpm")
combined = pm.utilities.join(fit, mp)

# Map
pm.utilities.visualization.map_tracks(
    combined, projection="+proj=laea +lat_0=-60 +lon_0=70 +units=km +datum=WGS84"
)
```
"""

from pathlib import Path

from pymotum._version import __version__, __version_info__
# modelling before preprocessing: the prefilter builds on modelling.measurement
from pymotum import modelling, preprocessing, utilities
from pymotum.config import MapConfig, MPMConfig, PipelineConfig, SSMConfig
from pymotum.exceptions import ConvergenceFailure, ParseError, ProjectionError, PymotumError, SchemaError
from pymotum.pipeline import PipelineResult, run_pipeline


def sample_data_path() -> Path:
    """Path to the bundled three-track Argos sample file."""
    return Path(__file__).resolve().parent / "data" / "sample_tracks.csv"


__all__ = [
    '__version__',
    '__version_info__',
    'preprocessing',
    'modelling',
    'utilities',
    'SSMConfig',
    'MPMConfig',
    'MapConfig',
    'PipelineConfig',
    'PipelineResult',
    'run_pipeline',
    'PymotumError',
    'SchemaError',
    'ParseError',
    'ConvergenceFailure',
    'ProjectionError',
    'sample_data_path',
]
