"""Input data handling."""

from .preprocessing import MatrixPreconditioner, PreconditionReport, InputLayer

__all__ = ['MatrixPreconditioner', 'PreconditionReport', 'InputLayer']
