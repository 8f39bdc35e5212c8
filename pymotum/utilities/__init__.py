"""
Utility functions for pymotum.

- Extraction: flatten fits into tables, join locations with behaviour, export
- Visualization: diagnostic plots, projected maps and interactive maps
"""

# Extraction functions
from pymotum.utilities.extraction import export_csv, grab, join

# Import visualization submodule
from pymotum.utilities import visualization

__all__ = [
    # Extraction functions
    'grab',
    'join',
    'export_csv',
    # Visualization module
    'visualization',
]
