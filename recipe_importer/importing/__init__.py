"""
Import subsystem exports.
"""

from .config import ImporterConfig
from .engine import (
    DoclingTextExtractor,
    ExtractionGateway,
    OpenAIRecipeParser,
    PdfRecipeGateway,
    PypdfTextExtractor,
    RecipeParser,
    TextExtractor,
    build_extraction_gateway,
    parse_recipes_payload,
)
from .errors import (
    ExtractionFailure,
    IngredientInUse,
    InvalidStatusTransition,
    NotFound,
    ParseFailure,
    PersistenceConflict,
    PipelineFailure,
    RecipeImportError,
)
from .events import JobChannel, JobEventBus, Subscription
from .fuzzy import FuzzyMatch, FuzzyMatcher, normalize_name, similarity_score
from .models import (
    IngredientRecord,
    InstructionRecord,
    JobEvent,
    JobEventType,
    NutritionFields,
    NutritionRecord,
    ParsedIngredient,
    ParsedInstruction,
    ParsedRecipe,
    RecipeFields,
    RecipeIngredientRecord,
    RecipeRecord,
    RecipeStatus,
    ResolvedIngredientLink,
)
from .orchestrator import JobOrchestrator
from .repository import InMemoryRecipeRepository, RecipeRepository, SqlAlchemyRecipeRepository
from .resolver import IngredientResolver

__all__ = [
    "DoclingTextExtractor",
    "ExtractionFailure",
    "ExtractionGateway",
    "FuzzyMatch",
    "FuzzyMatcher",
    "ImporterConfig",
    "InMemoryRecipeRepository",
    "IngredientInUse",
    "IngredientRecord",
    "IngredientResolver",
    "InstructionRecord",
    "InvalidStatusTransition",
    "JobChannel",
    "JobEvent",
    "JobEventBus",
    "JobEventType",
    "JobOrchestrator",
    "NotFound",
    "NutritionFields",
    "NutritionRecord",
    "OpenAIRecipeParser",
    "ParseFailure",
    "ParsedIngredient",
    "ParsedInstruction",
    "ParsedRecipe",
    "PdfRecipeGateway",
    "PersistenceConflict",
    "PipelineFailure",
    "PypdfTextExtractor",
    "RecipeFields",
    "RecipeImportError",
    "RecipeIngredientRecord",
    "RecipeParser",
    "RecipeRecord",
    "RecipeRepository",
    "RecipeStatus",
    "ResolvedIngredientLink",
    "SqlAlchemyRecipeRepository",
    "Subscription",
    "TextExtractor",
    "build_extraction_gateway",
    "normalize_name",
    "parse_recipes_payload",
    "similarity_score",
]
