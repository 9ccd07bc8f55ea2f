import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from recipe_importer.importing import (
    IngredientInUse,
    InMemoryRecipeRepository,
    InvalidStatusTransition,
    NotFound,
    NutritionFields,
    ParsedInstruction,
    PersistenceConflict,
    RecipeFields,
    RecipeStatus,
    ResolvedIngredientLink,
    SqlAlchemyRecipeRepository,
)
from recipe_importer.importing.repository import (
    PLACEHOLDER_RECIPE_NAME,
    IngredientModel,
    InstructionModel,
    NutritionModel,
    RecipeIngredientModel,
    RecipeModel,
)


@pytest.fixture(params=["memory", "sqlalchemy"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryRecipeRepository()
    return SqlAlchemyRecipeRepository(f"sqlite+pysqlite:///{tmp_path / 'test.db'}")


def _soup_fields():
    return RecipeFields(name="Tomato soup", description="Quick soup", prep_time=10, cook_time=20, servings=2)


def _sql_row_counts(repo):
    with repo.SessionLocal() as session:
        return {
            model.__tablename__: session.execute(select(func.count()).select_from(model)).scalar()
            for model in (RecipeModel, RecipeIngredientModel, InstructionModel, IngredientModel, NutritionModel)
        }


def test_create_recipe_persists_children_in_step_order(repo):
    tomato = repo.create_ingredient("Tomato")
    onion = repo.create_ingredient("Onion")
    links = [
        ResolvedIngredientLink(ingredient_id=tomato.id, quantity=4, unit="pcs"),
        ResolvedIngredientLink(ingredient_id=onion.id, quantity=0.5),
    ]
    instructions = [
        ParsedInstruction(step=2, content="Simmer"),
        ParsedInstruction(step=1, content="Chop"),
        ParsedInstruction(step=3, content="Blend"),
    ]

    recipe = repo.create_recipe(_soup_fields(), links, instructions)

    assert recipe.status == RecipeStatus.COMPLETED
    assert recipe.name == "Tomato soup" and recipe.servings == 2
    assert [(i.step, i.content) for i in recipe.instructions] == [(1, "Chop"), (2, "Simmer"), (3, "Blend")]
    assert {(link.ingredient_name, link.quantity, link.unit) for link in recipe.ingredients} == {
        ("Tomato", 4, "pcs"),
        ("Onion", 0.5, None),
    }

    fetched = repo.get_recipe(recipe.id, with_relations=True)
    assert fetched.to_payload()["instructions"][0] == {"step": 1, "content": "Chop"}
    assert repo.get_recipe(recipe.id).ingredients == []
    assert repo.count_ingredient_usages(tomato.id) == 1


def test_create_recipe_with_unknown_ingredient_persists_nothing(repo):
    links = [ResolvedIngredientLink(ingredient_id="missing")]
    with pytest.raises(NotFound):
        repo.create_recipe(_soup_fields(), links, [ParsedInstruction(step=1, content="Chop")])
    assert repo.list_completed_recipes() == []


def test_memory_create_recipe_is_atomic_when_instruction_staging_fails(monkeypatch):
    repo = InMemoryRecipeRepository()
    tomato = repo.create_ingredient("Tomato")

    def boom(recipe_id, instructions):
        raise RuntimeError("disk full")

    monkeypatch.setattr(repo, "_stage_instructions", boom)
    with pytest.raises(RuntimeError):
        repo.create_recipe(_soup_fields(), [ResolvedIngredientLink(ingredient_id=tomato.id)], [])

    assert repo.recipes == {}
    assert repo.recipe_ingredients == {}
    assert repo.instructions == {}


def test_sqlalchemy_create_recipe_is_atomic_when_instruction_insert_fails(tmp_path, monkeypatch):
    repo = SqlAlchemyRecipeRepository(f"sqlite+pysqlite:///{tmp_path / 'atomic.db'}")
    tomato = repo.create_ingredient("Tomato")

    def boom(session, recipe_id, instructions):
        raise RuntimeError("disk full")

    monkeypatch.setattr(repo, "_insert_instructions", boom)
    with pytest.raises(RuntimeError):
        repo.create_recipe(_soup_fields(), [ResolvedIngredientLink(ingredient_id=tomato.id)], [])

    counts = _sql_row_counts(repo)
    assert counts["recipes"] == 0
    assert counts["recipe_ingredients"] == 0
    assert counts["instructions"] == 0
    assert counts["ingredients"] == 1


def test_sqlalchemy_constraint_failure_rolls_back_recipe_and_links(tmp_path):
    repo = SqlAlchemyRecipeRepository(f"sqlite+pysqlite:///{tmp_path / 'constraint.db'}")
    tomato = repo.create_ingredient("Tomato")
    instructions = [ParsedInstruction(step=1, content="Chop"), ParsedInstruction(step=2, content=None)]

    with pytest.raises(IntegrityError):
        repo.create_recipe(_soup_fields(), [ResolvedIngredientLink(ingredient_id=tomato.id)], instructions)

    counts = _sql_row_counts(repo)
    assert counts["recipes"] == 0
    assert counts["recipe_ingredients"] == 0
    assert counts["instructions"] == 0


def test_complete_recipe_fills_placeholder_in_place(repo):
    placeholder = repo.create_empty()
    assert placeholder.status == RecipeStatus.PROCESSING
    assert placeholder.name == PLACEHOLDER_RECIPE_NAME
    assert repo.list_completed_recipes() == []

    basil = repo.create_ingredient("Basil")
    recipe = repo.complete_recipe(
        placeholder.id,
        _soup_fields(),
        [ResolvedIngredientLink(ingredient_id=basil.id, quantity=1, unit="bunch")],
        [ParsedInstruction(step=1, content="Serve")],
    )

    assert recipe.id == placeholder.id
    assert recipe.status == RecipeStatus.COMPLETED
    assert recipe.ingredients[0].ingredient_name == "Basil"
    assert [r.id for r in repo.list_completed_recipes()] == [placeholder.id]

    with pytest.raises(InvalidStatusTransition):
        repo.complete_recipe(placeholder.id, _soup_fields(), [], [])


def test_completed_recipe_children_are_written_once(repo):
    basil = repo.create_ingredient("Basil")
    placeholder = repo.create_empty()
    links = [ResolvedIngredientLink(ingredient_id=basil.id)]
    steps = [ParsedInstruction(step=1, content="Serve")]
    repo.complete_recipe(placeholder.id, _soup_fields(), links, steps)

    with pytest.raises(InvalidStatusTransition):
        repo.complete_recipe(placeholder.id, _soup_fields(), links, steps)

    stored = repo.get_recipe(placeholder.id, with_relations=True)
    assert len(stored.ingredients) == 1
    assert [(i.step, i.content) for i in stored.instructions] == [(1, "Serve")]
    assert repo.count_ingredient_usages(basil.id) == 1

    failed = repo.create_empty()
    repo.update_status(failed.id, RecipeStatus.FAILED, error_message="No text")
    with pytest.raises(InvalidStatusTransition):
        repo.complete_recipe(failed.id, _soup_fields(), links, steps)
    assert repo.get_recipe(failed.id, with_relations=True).ingredients == []


def test_failed_recipe_is_terminal(repo):
    recipe = repo.create_empty()
    failed = repo.update_status(recipe.id, RecipeStatus.FAILED, error_message="No text")
    assert failed.status == RecipeStatus.FAILED
    assert failed.error_message == "No text"
    assert repo.get_recipe(recipe.id).to_payload()["error"] == "No text"

    with pytest.raises(InvalidStatusTransition):
        repo.update_status(recipe.id, RecipeStatus.COMPLETED)
    with pytest.raises(InvalidStatusTransition):
        repo.update_status(recipe.id, RecipeStatus.PROCESSING)


def test_update_fields_keeps_status(repo):
    recipe = repo.create_recipe(_soup_fields(), [], [])
    updated = repo.update_fields(recipe.id, RecipeFields(name="Gazpacho", servings=4))
    assert updated.status == RecipeStatus.COMPLETED
    assert updated.name == "Gazpacho"
    assert updated.servings == 4
    assert updated.description is None


def test_missing_recipe_operations(repo):
    assert repo.get_recipe("nope") is None
    with pytest.raises(NotFound):
        repo.update_status("nope", RecipeStatus.FAILED, error_message="x")
    with pytest.raises(NotFound):
        repo.complete_recipe("nope", _soup_fields(), [], [])
    with pytest.raises(NotFound):
        repo.update_fields("nope", _soup_fields())
    with pytest.raises(NotFound):
        repo.delete_recipe("nope")


def test_delete_recipe_removes_children(repo):
    tomato = repo.create_ingredient("Tomato")
    recipe = repo.create_recipe(
        _soup_fields(),
        [ResolvedIngredientLink(ingredient_id=tomato.id)],
        [ParsedInstruction(step=1, content="Chop")],
    )
    repo.delete_recipe(recipe.id)
    assert repo.get_recipe(recipe.id) is None
    assert repo.count_ingredient_usages(tomato.id) == 0
    # Ingredients outlive the recipes that used them.
    assert repo.get_ingredient(tomato.id) is not None


def test_ingredient_catalog(repo):
    tomato = repo.create_ingredient("  Tomato ")
    assert tomato.name == "Tomato"
    assert tomato.normalized_name == "tomato"
    assert repo.find_ingredient_by_name("TOMATO  ").id == tomato.id
    assert repo.find_ingredient_by_normalized_name("tomato").id == tomato.id
    assert repo.find_ingredient_by_name("basil") is None

    with pytest.raises(PersistenceConflict):
        repo.create_ingredient("tomato")

    onion = repo.create_ingredient("Onion")
    assert {i.id for i in repo.list_ingredients()} == {tomato.id, onion.id}

    renamed = repo.update_ingredient(onion.id, "Red Onion")
    assert renamed.normalized_name == "red onion"
    with pytest.raises(PersistenceConflict):
        repo.update_ingredient(onion.id, "TOMATO")
    with pytest.raises(NotFound):
        repo.update_ingredient("nope", "Leek")


def test_ingredient_in_use_cannot_be_deleted(repo):
    tomato = repo.create_ingredient("Tomato")
    recipe = repo.create_recipe(_soup_fields(), [ResolvedIngredientLink(ingredient_id=tomato.id)], [])

    with pytest.raises(IngredientInUse):
        repo.delete_ingredient(tomato.id)

    repo.delete_recipe(recipe.id)
    repo.delete_ingredient(tomato.id)
    assert repo.get_ingredient(tomato.id) is None
    with pytest.raises(NotFound):
        repo.delete_ingredient(tomato.id)


def test_sqlalchemy_repository_survives_reopen(tmp_path):
    url = f"sqlite+pysqlite:///{tmp_path / 'reopen.db'}"
    repo = SqlAlchemyRecipeRepository(url)
    tomato = repo.create_ingredient("Tomato")
    recipe = repo.create_recipe(
        _soup_fields(),
        [ResolvedIngredientLink(ingredient_id=tomato.id, quantity=2)],
        [ParsedInstruction(step=1, content="Chop")],
    )

    reopened = SqlAlchemyRecipeRepository(url)
    fetched = reopened.get_recipe(recipe.id, with_relations=True)
    assert fetched.name == "Tomato soup"
    assert fetched.ingredients[0].ingredient_id == tomato.id
    assert fetched.instructions[0].content == "Chop"


def test_nutrition_lifecycle(repo):
    tomato = repo.create_ingredient("Tomato")
    assert repo.get_nutrition(tomato.id) is None

    added = repo.add_nutrition(tomato.id, NutritionFields(calories_per_100=18, protein=0.9, carbs=3.9))
    assert added.ingredient_id == tomato.id
    assert added.calories_unit == "kcal"
    assert added.fat is None
    assert repo.get_nutrition(tomato.id).to_payload()["caloriesPer100"] == 18

    with pytest.raises(PersistenceConflict):
        repo.add_nutrition(tomato.id, NutritionFields(calories_per_100=20))

    updated = repo.update_nutrition(tomato.id, {"fat": 0.2, "calories_unit": "kJ"})
    assert (updated.calories_per_100, updated.fat, updated.calories_unit) == (18, 0.2, "kJ")
    assert updated.protein == 0.9

    with pytest.raises(ValueError):
        repo.update_nutrition(tomato.id, {"fiber": -1})
    with pytest.raises(ValueError):
        repo.update_nutrition(tomato.id, {"sugar": 2})
    assert repo.get_nutrition(tomato.id).fiber is None

    repo.delete_nutrition(tomato.id)
    assert repo.get_nutrition(tomato.id) is None
    with pytest.raises(NotFound):
        repo.delete_nutrition(tomato.id)
    with pytest.raises(NotFound):
        repo.update_nutrition(tomato.id, {"fat": 1})


def test_nutrition_requires_existing_ingredient(repo):
    with pytest.raises(NotFound):
        repo.add_nutrition("nope", NutritionFields(calories_per_100=10))
    with pytest.raises(NotFound):
        repo.update_nutrition("nope", {"fat": 1})
    assert repo.get_nutrition("nope") is None


def test_deleting_ingredient_removes_its_nutrition(repo):
    basil = repo.create_ingredient("Basil")
    repo.add_nutrition(basil.id, NutritionFields(calories_per_100=23))
    repo.delete_ingredient(basil.id)
    assert repo.get_nutrition(basil.id) is None

    again = repo.create_ingredient("Basil")
    assert repo.add_nutrition(again.id, NutritionFields(calories_per_100=22)).calories_per_100 == 22
