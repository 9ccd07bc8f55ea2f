from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from recipe_importer.importing import (
    IngredientResolver,
    InvalidStatusTransition,
    NotFound,
    RecipeRepository,
)

from api.dependencies import get_repo, get_resolver
from api.schemas import RecipeCreate, RecipeUpdate

router = APIRouter(prefix="/recipes", tags=["recipes"])


@router.get("")
def list_recipes(repo: RecipeRepository = Depends(get_repo)):
    return [recipe.to_payload() for recipe in repo.list_completed_recipes(with_relations=True)]


@router.get("/{recipe_id}")
def get_recipe(recipe_id: str, repo: RecipeRepository = Depends(get_repo)):
    recipe = repo.get_recipe(recipe_id, with_relations=True)
    if not recipe:
        raise HTTPException(status_code=404, detail=f"Recipe with ID {recipe_id} not found")
    return recipe.to_payload()


@router.post("", status_code=201)
def create_recipe(
    body: RecipeCreate,
    repo: RecipeRepository = Depends(get_repo),
    resolver: IngredientResolver = Depends(get_resolver),
):
    # Resolve before the write transaction; fuzzy lookups can be slow.
    try:
        links = resolver.resolve_all(body.parsed_ingredients())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    recipe = repo.create_recipe(body.fields(), links, body.parsed_instructions())
    return recipe.to_payload()


@router.patch("/{recipe_id}")
def update_recipe(recipe_id: str, body: RecipeUpdate, repo: RecipeRepository = Depends(get_repo)):
    current = repo.get_recipe(recipe_id)
    if not current:
        raise HTTPException(status_code=404, detail=f"Recipe with ID {recipe_id} not found")
    try:
        recipe = repo.update_fields(recipe_id, body.merged_with(current))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return recipe.to_payload()


@router.delete("/{recipe_id}", status_code=204)
def delete_recipe(recipe_id: str, repo: RecipeRepository = Depends(get_repo)):
    try:
        repo.delete_recipe(recipe_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=204)
