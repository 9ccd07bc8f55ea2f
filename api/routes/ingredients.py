from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from recipe_importer.importing import IngredientInUse, NotFound, PersistenceConflict, RecipeRepository

from api.dependencies import get_repo
from api.schemas import IngredientIn, NutritionIn, NutritionUpdate

router = APIRouter(prefix="/ingredients", tags=["ingredients"])


@router.get("")
def list_ingredients(repo: RecipeRepository = Depends(get_repo)):
    ingredients = sorted(repo.list_ingredients(), key=lambda i: i.name.lower())
    return [ingredient.to_payload() for ingredient in ingredients]


@router.get("/search")
def find_ingredient(name: str, repo: RecipeRepository = Depends(get_repo)):
    if not name.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")
    ingredient = repo.find_ingredient_by_name(name)
    if not ingredient:
        raise HTTPException(status_code=404, detail=f'Ingredient "{name}" not found')
    return ingredient.to_payload()


@router.get("/{ingredient_id}")
def get_ingredient(ingredient_id: str, repo: RecipeRepository = Depends(get_repo)):
    ingredient = repo.get_ingredient(ingredient_id)
    if not ingredient:
        raise HTTPException(status_code=404, detail=f"Ingredient with ID {ingredient_id} not found")
    return ingredient.to_payload()


@router.post("", status_code=201)
def create_ingredient(body: IngredientIn, repo: RecipeRepository = Depends(get_repo)):
    if not body.name.strip():
        raise HTTPException(status_code=400, detail="Ingredient name must not be blank")
    try:
        ingredient = repo.create_ingredient(body.name)
    except PersistenceConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ingredient.to_payload()


@router.patch("/{ingredient_id}")
def update_ingredient(ingredient_id: str, body: IngredientIn, repo: RecipeRepository = Depends(get_repo)):
    if not body.name.strip():
        raise HTTPException(status_code=400, detail="Ingredient name must not be blank")
    try:
        ingredient = repo.update_ingredient(ingredient_id, body.name)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PersistenceConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ingredient.to_payload()


@router.delete("/{ingredient_id}", status_code=204)
def delete_ingredient(ingredient_id: str, repo: RecipeRepository = Depends(get_repo)):
    try:
        repo.delete_ingredient(ingredient_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except IngredientInUse as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return Response(status_code=204)


@router.get("/{ingredient_id}/nutrition")
def get_nutrition(ingredient_id: str, repo: RecipeRepository = Depends(get_repo)):
    if not repo.get_ingredient(ingredient_id):
        raise HTTPException(status_code=404, detail=f"Ingredient with ID {ingredient_id} not found")
    nutrition = repo.get_nutrition(ingredient_id)
    if not nutrition:
        raise HTTPException(status_code=404, detail=f"No nutrition data found for ingredient {ingredient_id}")
    return nutrition.to_payload()


@router.post("/{ingredient_id}/nutrition", status_code=201)
def add_nutrition(ingredient_id: str, body: NutritionIn, repo: RecipeRepository = Depends(get_repo)):
    try:
        nutrition = repo.add_nutrition(ingredient_id, body.fields())
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PersistenceConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return nutrition.to_payload()


@router.patch("/{ingredient_id}/nutrition")
def update_nutrition(ingredient_id: str, body: NutritionUpdate, repo: RecipeRepository = Depends(get_repo)):
    try:
        nutrition = repo.update_nutrition(ingredient_id, body.changes())
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return nutrition.to_payload()


@router.delete("/{ingredient_id}/nutrition", status_code=204)
def delete_nutrition(ingredient_id: str, repo: RecipeRepository = Depends(get_repo)):
    try:
        repo.delete_nutrition(ingredient_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=204)
