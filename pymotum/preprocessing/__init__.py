"""
Telemetry preprocessing module for pymotum.

This module provides the steps that come before model fitting:
- Loading: read and validate observation tables
- Filtering: duplicate, minimum-interval and speed/angle prefiltering
- Segmentation: split tracks at long transmission gaps
- Sampling rate: summarise fix intervals to choose a time step
"""

# Loading
from pymotum.preprocessing.loading import check_tracks, format_data, read_tracks

# Filtering
from pymotum.preprocessing.filtration import prefilter, sda_filter, speed_filter

# Segmentation
from pymotum.preprocessing.segmentation import split_by_gap

# Sampling rate
from pymotum.preprocessing.sampling_rate import get_sampling_rate, suggest_time_step

__all__ = [
    # Loading
    'read_tracks',
    'format_data',
    'check_tracks',
    # Filtering
    'prefilter',
    'speed_filter',
    'sda_filter',
    # Segmentation
    'split_by_gap',
    # Sampling rate
    'get_sampling_rate',
    'suggest_time_step',
]
