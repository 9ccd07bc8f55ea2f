from __future__ import annotations


class RecipeImportError(Exception):
    """Base class for all import subsystem errors."""


class ExtractionFailure(RecipeImportError):
    """Raised when plain text cannot be extracted from an uploaded document."""


class ParseFailure(RecipeImportError):
    """Raised when the AI step returns malformed, empty or unusable output."""


class PersistenceConflict(RecipeImportError):
    """Raised when a write violates a uniqueness constraint."""


class IngredientInUse(PersistenceConflict):
    """Raised when deleting an ingredient still referenced by a recipe."""


class NotFound(RecipeImportError):
    """Raised when a referenced recipe or ingredient does not exist."""


class InvalidStatusTransition(RecipeImportError):
    """Raised when a recipe in a terminal status would change status again."""


class PipelineFailure(RecipeImportError):
    """Generic failure of an import job step that is not otherwise classified."""
