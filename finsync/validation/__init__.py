"""Validation package."""

from finsync.validation.validator import MutationValidator, ValidationError

__all__ = ["MutationValidator", "ValidationError"]
