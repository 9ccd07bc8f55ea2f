from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from recipe_importer.importing import (
    NutritionFields,
    ParsedIngredient,
    ParsedInstruction,
    RecipeFields,
    RecipeRecord,
)


class IngredientLineIn(BaseModel):
    name: str = Field(min_length=1)
    quantity: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None


class InstructionIn(BaseModel):
    step: int = Field(ge=1)
    content: str = Field(min_length=1)


class RecipeCreate(BaseModel):
    """Recipe submitted directly, e.g. from a form."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    prep_time: Optional[int] = Field(default=None, ge=0, alias="prepTime")
    cook_time: Optional[int] = Field(default=None, ge=0, alias="cookTime")
    servings: Optional[int] = Field(default=None, ge=1)
    ingredients: List[IngredientLineIn] = Field(default_factory=list)
    instructions: List[InstructionIn] = Field(default_factory=list)

    def fields(self) -> RecipeFields:
        return RecipeFields(
            name=self.name,
            description=self.description,
            prep_time=self.prep_time,
            cook_time=self.cook_time,
            servings=self.servings,
        )

    def parsed_ingredients(self) -> List[ParsedIngredient]:
        return [ParsedIngredient(name=i.name, quantity=i.quantity, unit=i.unit) for i in self.ingredients]

    def parsed_instructions(self) -> List[ParsedInstruction]:
        return [ParsedInstruction(step=i.step, content=i.content) for i in self.instructions]


class RecipeUpdate(BaseModel):
    """Partial update of a recipe's scalar fields."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    prep_time: Optional[int] = Field(default=None, ge=0, alias="prepTime")
    cook_time: Optional[int] = Field(default=None, ge=0, alias="cookTime")
    servings: Optional[int] = Field(default=None, ge=1)

    def merged_with(self, current: RecipeRecord) -> RecipeFields:
        changes = self.model_dump(exclude_unset=True)
        return RecipeFields(
            name=changes.get("name") or current.name,
            description=changes.get("description", current.description),
            prep_time=changes.get("prep_time", current.prep_time),
            cook_time=changes.get("cook_time", current.cook_time),
            servings=changes.get("servings", current.servings),
        )


class IngredientIn(BaseModel):
    name: str = Field(min_length=1)


class NutritionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    calories_per_100: float = Field(ge=0, alias="caloriesPer100")
    calories_unit: str = Field(default="kcal", min_length=1, alias="caloriesUnit")
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)
    fiber: Optional[float] = Field(default=None, ge=0)

    def fields(self) -> NutritionFields:
        return NutritionFields(**self.model_dump())


class NutritionUpdate(BaseModel):
    """Partial nutrition update; only the keys sent are changed."""

    model_config = ConfigDict(populate_by_name=True)

    calories_per_100: Optional[float] = Field(default=None, ge=0, alias="caloriesPer100")
    calories_unit: Optional[str] = Field(default=None, min_length=1, alias="caloriesUnit")
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)
    fiber: Optional[float] = Field(default=None, ge=0)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)
