"""
Movement modelling module for pymotum.

- State-space regularisation: ``fit_ssm`` (rw, crw and mp process models)
- Residual diagnostics: ``osar`` and ``residual_summary``
- Behavioural estimation: ``fit_mpm`` (independent or pooled move persistence)
- Simulation: ``sim_tracks``
"""

# State-space models
from pymotum.modelling.ssm import FittedTrack, SSMFit, TrackFailure, fit_ssm, prediction_grid

# Residual diagnostics
from pymotum.modelling.residuals import osar, residual_summary

# Move persistence
from pymotum.modelling.mpm import MPMFit, MPMTrack, fit_mpm

# Simulation
from pymotum.modelling.simulate import sim_tracks

__all__ = [
    # State-space models
    'fit_ssm',
    'prediction_grid',
    'SSMFit',
    'FittedTrack',
    'TrackFailure',
    # Residual diagnostics
    'osar',
    'residual_summary',
    # Move persistence
    'fit_mpm',
    'MPMFit',
    'MPMTrack',
    # Simulation
    'sim_tracks',
]
