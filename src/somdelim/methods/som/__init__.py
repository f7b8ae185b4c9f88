"""Hexagonal SOM and SuperSOM training."""

from .grid import grid_side, build_grid
from .supersom_core import SuperSOM

__all__ = ['grid_side', 'build_grid', 'SuperSOM']
