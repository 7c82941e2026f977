"""Validation and sanity checks for the silo yield workbench."""

from .sanity_checks import SanityChecker, ValidationWarning, validate_yield_results

__all__ = [
    "SanityChecker",
    "ValidationWarning",
    "validate_yield_results"
]
