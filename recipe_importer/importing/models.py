from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class RecipeStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RecipeStatus.COMPLETED, RecipeStatus.FAILED)


class JobEventType(str, Enum):
    STARTED = "started"
    EXTRACTING_TEXT = "extracting_text"
    PROCESSING_AI = "processing_ai"
    SAVING_RECIPES = "saving_recipes"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobEventType.FINISHED, JobEventType.FAILED)


@dataclass(frozen=True)
class JobEvent:
    type: JobEventType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}


@dataclass
class ParsedIngredient:
    name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None


@dataclass
class ParsedInstruction:
    step: int
    content: str


@dataclass
class ParsedRecipe:
    name: str
    description: Optional[str] = None
    prep_time: Optional[int] = None
    cook_time: Optional[int] = None
    servings: Optional[int] = None
    ingredients: List[ParsedIngredient] = field(default_factory=list)
    instructions: List[ParsedInstruction] = field(default_factory=list)

    def fields(self) -> "RecipeFields":
        return RecipeFields(
            name=self.name,
            description=self.description,
            prep_time=self.prep_time,
            cook_time=self.cook_time,
            servings=self.servings,
        )


@dataclass
class RecipeFields:
    """
    Scalar recipe columns written by create/complete/update operations.
    """

    name: str
    description: Optional[str] = None
    prep_time: Optional[int] = None
    cook_time: Optional[int] = None
    servings: Optional[int] = None


@dataclass
class ResolvedIngredientLink:
    ingredient_id: str
    quantity: Optional[float] = None
    unit: Optional[str] = None


@dataclass
class IngredientRecord:
    id: str
    name: str
    normalized_name: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "normalizedName": self.normalized_name,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class RecipeIngredientRecord:
    id: str
    recipe_id: str
    ingredient_id: str
    ingredient_name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None


@dataclass
class InstructionRecord:
    id: str
    recipe_id: str
    step: int
    content: str


@dataclass
class RecipeRecord:
    id: str
    status: RecipeStatus
    name: str
    description: Optional[str] = None
    prep_time: Optional[int] = None
    cook_time: Optional[int] = None
    servings: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    ingredients: List[RecipeIngredientRecord] = field(default_factory=list)
    instructions: List[InstructionRecord] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "name": self.name,
            "description": self.description,
            "prepTime": self.prep_time,
            "cookTime": self.cook_time,
            "servings": self.servings,
            "error": self.error_message,
            "ingredients": [
                {
                    "ingredientId": link.ingredient_id,
                    "name": link.ingredient_name,
                    "quantity": link.quantity,
                    "unit": link.unit,
                }
                for link in self.ingredients
            ],
            "instructions": [{"step": ins.step, "content": ins.content} for ins in self.instructions],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


NUTRITION_FIELDS = ("calories_per_100", "calories_unit", "protein", "carbs", "fat", "fiber")


@dataclass
class NutritionFields:
    """
    Nutrition values per 100 g/ml of an ingredient. Only calories are mandatory.
    """

    calories_per_100: float
    calories_unit: str = "kcal"
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    fiber: Optional[float] = None


@dataclass
class NutritionRecord:
    id: str
    ingredient_id: str
    calories_per_100: float
    calories_unit: str = "kcal"
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    fiber: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ingredientId": self.ingredient_id,
            "caloriesPer100": self.calories_per_100,
            "caloriesUnit": self.calories_unit,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
            "fiber": self.fiber,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
