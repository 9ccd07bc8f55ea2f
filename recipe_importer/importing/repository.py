from __future__ import annotations

import threading
import uuid
from copy import deepcopy
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import IngredientInUse, InvalidStatusTransition, NotFound, PersistenceConflict
from .fuzzy import normalize_name
from .models import (
    IngredientRecord,
    InstructionRecord,
    NUTRITION_FIELDS,
    NutritionFields,
    NutritionRecord,
    ParsedInstruction,
    RecipeFields,
    RecipeIngredientRecord,
    RecipeRecord,
    RecipeStatus,
    ResolvedIngredientLink,
)

PLACEHOLDER_RECIPE_NAME = "Untitled recipe"

Base = declarative_base()


class RecipeModel(Base):
    __tablename__ = "recipes"
    id = Column(String, primary_key=True)
    status = Column(Enum(RecipeStatus), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    prep_time = Column(Integer)
    cook_time = Column(Integer)
    servings = Column(Integer)
    error_message = Column(Text)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)


class IngredientModel(Base):
    __tablename__ = "ingredients"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    normalized_name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)


class RecipeIngredientModel(Base):
    __tablename__ = "recipe_ingredients"
    id = Column(String, primary_key=True)
    recipe_id = Column(String, ForeignKey("recipes.id"), nullable=False, index=True)
    ingredient_id = Column(String, ForeignKey("ingredients.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Float)
    unit = Column(String)


class InstructionModel(Base):
    __tablename__ = "instructions"
    id = Column(String, primary_key=True)
    recipe_id = Column(String, ForeignKey("recipes.id"), nullable=False, index=True)
    step = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    content = Column(Text, nullable=False)


class NutritionModel(Base):
    __tablename__ = "nutrition"
    id = Column(String, primary_key=True)
    ingredient_id = Column(String, ForeignKey("ingredients.id"), nullable=False, unique=True)
    calories_per_100 = Column(Float, nullable=False)
    calories_unit = Column(String, nullable=False, default="kcal")
    protein = Column(Float)
    carbs = Column(Float)
    fat = Column(Float)
    fiber = Column(Float)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)


def _new_id() -> str:
    return str(uuid.uuid4())


def _check_transition(recipe_id: str, current: RecipeStatus, new: RecipeStatus) -> None:
    if current.is_terminal and new != current:
        raise InvalidStatusTransition(
            f"Recipe {recipe_id} is already {current.value} and cannot become {new.value}"
        )


def _check_completable(recipe_id: str, current: RecipeStatus) -> None:
    # Children are written exactly once, by the transaction that leaves PROCESSING.
    if current != RecipeStatus.PROCESSING:
        raise InvalidStatusTransition(
            f"Recipe {recipe_id} is {current.value}; only processing recipes can be completed"
        )


class RecipeRepository:
    """
    Persistence boundary for recipes and the ingredient catalog.

    `create_recipe` and `complete_recipe` are atomic: the recipe row, its
    ingredient links and its instructions become visible together or not at
    all. Ingredient links must reference already resolved ingredients;
    resolution happens outside the atomic unit. Lookups return None when a
    row is missing, while updates and deletes raise NotFound.
    """

    # Recipe operations
    def create_empty(self) -> RecipeRecord:
        raise NotImplementedError

    def create_recipe(
        self,
        fields: RecipeFields,
        links: Sequence[ResolvedIngredientLink],
        instructions: Sequence[ParsedInstruction],
    ) -> RecipeRecord:
        raise NotImplementedError

    def complete_recipe(
        self,
        recipe_id: str,
        fields: RecipeFields,
        links: Sequence[ResolvedIngredientLink],
        instructions: Sequence[ParsedInstruction],
    ) -> RecipeRecord:
        raise NotImplementedError

    def update_status(
        self,
        recipe_id: str,
        status: RecipeStatus,
        fields: Optional[RecipeFields] = None,
        error_message: Optional[str] = None,
    ) -> RecipeRecord:
        raise NotImplementedError

    def update_fields(self, recipe_id: str, fields: RecipeFields) -> RecipeRecord:
        recipe = self.get_recipe(recipe_id)
        if recipe is None:
            raise NotFound(f"Recipe with ID {recipe_id} not found")
        self.update_status(recipe_id, recipe.status, fields=fields)
        return self.get_recipe(recipe_id, with_relations=True)

    def get_recipe(self, recipe_id: str, with_relations: bool = False) -> Optional[RecipeRecord]:
        raise NotImplementedError

    def list_completed_recipes(self, with_relations: bool = False) -> List[RecipeRecord]:
        raise NotImplementedError

    def delete_recipe(self, recipe_id: str) -> None:
        raise NotImplementedError

    # Ingredient catalog
    def get_ingredient(self, ingredient_id: str) -> Optional[IngredientRecord]:
        raise NotImplementedError

    def find_ingredient_by_normalized_name(self, normalized_name: str) -> Optional[IngredientRecord]:
        raise NotImplementedError

    def find_ingredient_by_name(self, name: str) -> Optional[IngredientRecord]:
        return self.find_ingredient_by_normalized_name(normalize_name(name))

    def list_ingredients(self) -> List[IngredientRecord]:
        raise NotImplementedError

    def create_ingredient(self, name: str, normalized_name: Optional[str] = None) -> IngredientRecord:
        raise NotImplementedError

    def update_ingredient(self, ingredient_id: str, name: str) -> IngredientRecord:
        raise NotImplementedError

    def delete_ingredient(self, ingredient_id: str) -> None:
        raise NotImplementedError

    def count_ingredient_usages(self, ingredient_id: str) -> int:
        raise NotImplementedError

    # Nutrition, at most one entry per ingredient
    def get_nutrition(self, ingredient_id: str) -> Optional[NutritionRecord]:
        raise NotImplementedError

    def add_nutrition(self, ingredient_id: str, fields: NutritionFields) -> NutritionRecord:
        raise NotImplementedError

    def update_nutrition(self, ingredient_id: str, changes: Dict[str, Any]) -> NutritionRecord:
        raise NotImplementedError

    def delete_nutrition(self, ingredient_id: str) -> None:
        raise NotImplementedError


def _check_nutrition_changes(changes: Dict[str, Any]) -> None:
    unknown = set(changes) - set(NUTRITION_FIELDS)
    if unknown:
        raise ValueError(f"Unknown nutrition fields: {', '.join(sorted(unknown))}")
    for key in ("calories_per_100", "calories_unit"):
        if key in changes and changes[key] is None:
            raise ValueError(f"{key} must not be empty")
    for key, value in changes.items():
        if key != "calories_unit" and value is not None and value < 0:
            raise ValueError(f"{key} must be >= 0")


class InMemoryRecipeRepository(RecipeRepository):
    """
    Lock-guarded in-memory store for local runs and tests. It mirrors the DB
    shape, keeps copies of dataclasses to avoid cross-mutation between calls
    and stages every row of an atomic write before committing any of them.
    """

    def __init__(self):
        self.recipes: Dict[str, RecipeRecord] = {}
        self.ingredients: Dict[str, IngredientRecord] = {}
        self.recipe_ingredients: Dict[str, RecipeIngredientRecord] = {}
        self.instructions: Dict[str, InstructionRecord] = {}
        self.nutrition: Dict[str, NutritionRecord] = {}
        self._lock = threading.RLock()

    def _clone(self, obj):
        return deepcopy(obj)

    def create_empty(self) -> RecipeRecord:
        recipe = RecipeRecord(id=_new_id(), status=RecipeStatus.PROCESSING, name=PLACEHOLDER_RECIPE_NAME)
        with self._lock:
            self.recipes[recipe.id] = self._clone(recipe)
        return recipe

    def create_recipe(
        self,
        fields: RecipeFields,
        links: Sequence[ResolvedIngredientLink],
        instructions: Sequence[ParsedInstruction],
    ) -> RecipeRecord:
        recipe = RecipeRecord(id=_new_id(), status=RecipeStatus.COMPLETED, name=fields.name)
        self._apply_fields(recipe, fields)
        with self._lock:
            staged_links = self._stage_links(recipe.id, links)
            staged_instructions = self._stage_instructions(recipe.id, instructions)
            self._commit(recipe, staged_links, staged_instructions)
            return self.get_recipe(recipe.id, with_relations=True)

    def complete_recipe(
        self,
        recipe_id: str,
        fields: RecipeFields,
        links: Sequence[ResolvedIngredientLink],
        instructions: Sequence[ParsedInstruction],
    ) -> RecipeRecord:
        with self._lock:
            current = self.recipes.get(recipe_id)
            if current is None:
                raise NotFound(f"Recipe with ID {recipe_id} not found")
            _check_completable(recipe_id, current.status)
            recipe = self._clone(current)
            self._apply_fields(recipe, fields)
            recipe.status = RecipeStatus.COMPLETED
            recipe.error_message = None
            recipe.updated_at = datetime.utcnow()
            staged_links = self._stage_links(recipe_id, links)
            staged_instructions = self._stage_instructions(recipe_id, instructions)
            self._commit(recipe, staged_links, staged_instructions)
            return self.get_recipe(recipe_id, with_relations=True)

    def update_status(
        self,
        recipe_id: str,
        status: RecipeStatus,
        fields: Optional[RecipeFields] = None,
        error_message: Optional[str] = None,
    ) -> RecipeRecord:
        with self._lock:
            recipe = self.recipes.get(recipe_id)
            if recipe is None:
                raise NotFound(f"Recipe with ID {recipe_id} not found")
            _check_transition(recipe_id, recipe.status, status)
            recipe = self._clone(recipe)
            recipe.status = status
            if fields is not None:
                self._apply_fields(recipe, fields)
            if error_message is not None:
                recipe.error_message = error_message
            recipe.updated_at = datetime.utcnow()
            self.recipes[recipe_id] = recipe
            return self._clone(recipe)

    def get_recipe(self, recipe_id: str, with_relations: bool = False) -> Optional[RecipeRecord]:
        with self._lock:
            recipe = self.recipes.get(recipe_id)
            if recipe is None:
                return None
            recipe = self._clone(recipe)
            if with_relations:
                self._attach_relations(recipe)
            return recipe

    def list_completed_recipes(self, with_relations: bool = False) -> List[RecipeRecord]:
        with self._lock:
            ids = [r.id for r in self.recipes.values() if r.status == RecipeStatus.COMPLETED]
            return [self.get_recipe(recipe_id, with_relations=with_relations) for recipe_id in ids]

    def delete_recipe(self, recipe_id: str) -> None:
        with self._lock:
            if recipe_id not in self.recipes:
                raise NotFound(f"Recipe with ID {recipe_id} not found")
            for link_id in [k for k, v in self.recipe_ingredients.items() if v.recipe_id == recipe_id]:
                del self.recipe_ingredients[link_id]
            for ins_id in [k for k, v in self.instructions.items() if v.recipe_id == recipe_id]:
                del self.instructions[ins_id]
            del self.recipes[recipe_id]

    def get_ingredient(self, ingredient_id: str) -> Optional[IngredientRecord]:
        with self._lock:
            ingredient = self.ingredients.get(ingredient_id)
            return self._clone(ingredient) if ingredient else None

    def find_ingredient_by_normalized_name(self, normalized_name: str) -> Optional[IngredientRecord]:
        with self._lock:
            for ingredient in self.ingredients.values():
                if ingredient.normalized_name == normalized_name:
                    return self._clone(ingredient)
            return None

    def list_ingredients(self) -> List[IngredientRecord]:
        with self._lock:
            return [self._clone(i) for i in self.ingredients.values()]

    def create_ingredient(self, name: str, normalized_name: Optional[str] = None) -> IngredientRecord:
        normalized = normalized_name or normalize_name(name)
        with self._lock:
            if any(i.normalized_name == normalized for i in self.ingredients.values()):
                raise PersistenceConflict(f'Ingredient with name "{name}" already exists')
            ingredient = IngredientRecord(id=_new_id(), name=name.strip(), normalized_name=normalized)
            self.ingredients[ingredient.id] = self._clone(ingredient)
            return ingredient

    def update_ingredient(self, ingredient_id: str, name: str) -> IngredientRecord:
        normalized = normalize_name(name)
        with self._lock:
            ingredient = self.ingredients.get(ingredient_id)
            if ingredient is None:
                raise NotFound(f"Ingredient with ID {ingredient_id} not found")
            if any(i.normalized_name == normalized and i.id != ingredient_id for i in self.ingredients.values()):
                raise PersistenceConflict("Ingredient with this name already exists")
            ingredient = self._clone(ingredient)
            ingredient.name = name.strip()
            ingredient.normalized_name = normalized
            ingredient.updated_at = datetime.utcnow()
            self.ingredients[ingredient_id] = ingredient
            return self._clone(ingredient)

    def delete_ingredient(self, ingredient_id: str) -> None:
        with self._lock:
            if ingredient_id not in self.ingredients:
                raise NotFound(f"Ingredient with ID {ingredient_id} not found")
            usages = self.count_ingredient_usages(ingredient_id)
            if usages:
                raise IngredientInUse(
                    f"Cannot delete ingredient with ID {ingredient_id} because it is used in {usages} recipe(s)"
                )
            self.nutrition.pop(ingredient_id, None)
            del self.ingredients[ingredient_id]

    def count_ingredient_usages(self, ingredient_id: str) -> int:
        with self._lock:
            return len({v.recipe_id for v in self.recipe_ingredients.values() if v.ingredient_id == ingredient_id})

    def get_nutrition(self, ingredient_id: str) -> Optional[NutritionRecord]:
        with self._lock:
            nutrition = self.nutrition.get(ingredient_id)
            return self._clone(nutrition) if nutrition else None

    def add_nutrition(self, ingredient_id: str, fields: NutritionFields) -> NutritionRecord:
        _check_nutrition_changes(vars(fields))
        with self._lock:
            if ingredient_id not in self.ingredients:
                raise NotFound(f"Ingredient with ID {ingredient_id} not found")
            if ingredient_id in self.nutrition:
                raise PersistenceConflict(
                    f"Nutrition data already exists for ingredient {ingredient_id}. Use PATCH to update."
                )
            nutrition = NutritionRecord(id=_new_id(), ingredient_id=ingredient_id, **vars(fields))
            self.nutrition[ingredient_id] = self._clone(nutrition)
            return nutrition

    def update_nutrition(self, ingredient_id: str, changes: Dict[str, Any]) -> NutritionRecord:
        _check_nutrition_changes(changes)
        with self._lock:
            nutrition = self._existing_nutrition(ingredient_id)
            nutrition = self._clone(nutrition)
            for key, value in changes.items():
                setattr(nutrition, key, value)
            nutrition.updated_at = datetime.utcnow()
            self.nutrition[ingredient_id] = nutrition
            return self._clone(nutrition)

    def delete_nutrition(self, ingredient_id: str) -> None:
        with self._lock:
            self._existing_nutrition(ingredient_id)
            del self.nutrition[ingredient_id]

    def _existing_nutrition(self, ingredient_id: str) -> NutritionRecord:
        if ingredient_id not in self.ingredients:
            raise NotFound(f"Ingredient with ID {ingredient_id} not found")
        nutrition = self.nutrition.get(ingredient_id)
        if nutrition is None:
            raise NotFound(f"No nutrition data found for ingredient {ingredient_id}")
        return nutrition

    def _apply_fields(self, recipe: RecipeRecord, fields: RecipeFields) -> None:
        recipe.name = fields.name
        recipe.description = fields.description
        recipe.prep_time = fields.prep_time
        recipe.cook_time = fields.cook_time
        recipe.servings = fields.servings

    def _stage_links(self, recipe_id: str, links: Iterable[ResolvedIngredientLink]) -> List[RecipeIngredientRecord]:
        staged: List[RecipeIngredientRecord] = []
        for link in links:
            ingredient = self.ingredients.get(link.ingredient_id)
            if ingredient is None:
                raise NotFound(f"Ingredient with ID {link.ingredient_id} not found")
            staged.append(
                RecipeIngredientRecord(
                    id=_new_id(),
                    recipe_id=recipe_id,
                    ingredient_id=ingredient.id,
                    ingredient_name=ingredient.name,
                    quantity=link.quantity,
                    unit=link.unit,
                )
            )
        return staged

    def _stage_instructions(self, recipe_id: str, instructions: Iterable[ParsedInstruction]) -> List[InstructionRecord]:
        staged: List[InstructionRecord] = []
        for instruction in instructions:
            if instruction.content is None:
                raise ValueError(f"Instruction step {instruction.step} has no content")
            staged.append(
                InstructionRecord(id=_new_id(), recipe_id=recipe_id, step=instruction.step, content=instruction.content)
            )
        return staged

    def _commit(
        self,
        recipe: RecipeRecord,
        links: List[RecipeIngredientRecord],
        instructions: List[InstructionRecord],
    ) -> None:
        recipe.ingredients = []
        recipe.instructions = []
        self.recipes[recipe.id] = self._clone(recipe)
        for link in links:
            self.recipe_ingredients[link.id] = link
        for instruction in instructions:
            self.instructions[instruction.id] = instruction

    def _attach_relations(self, recipe: RecipeRecord) -> None:
        links = [self._clone(v) for v in self.recipe_ingredients.values() if v.recipe_id == recipe.id]
        for link in links:
            ingredient = self.ingredients.get(link.ingredient_id)
            if ingredient:
                link.ingredient_name = ingredient.name
        recipe.ingredients = links
        # sorted() is stable, so equal steps keep insertion order.
        recipe.instructions = sorted(
            (self._clone(v) for v in self.instructions.values() if v.recipe_id == recipe.id),
            key=lambda ins: ins.step,
        )


class SqlAlchemyRecipeRepository(RecipeRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    Atomic writes run inside a single session transaction.
    """

    def __init__(self, database_url: str):
        engine_kwargs = {"future": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url.endswith("://"):
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    # region Recipe operations
    def create_empty(self) -> RecipeRecord:
        now = datetime.utcnow()
        model = RecipeModel(
            id=_new_id(),
            status=RecipeStatus.PROCESSING,
            name=PLACEHOLDER_RECIPE_NAME,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(model)
            session.commit()
            return _recipe_from_model(model)

    def create_recipe(
        self,
        fields: RecipeFields,
        links: Sequence[ResolvedIngredientLink],
        instructions: Sequence[ParsedInstruction],
    ) -> RecipeRecord:
        now = datetime.utcnow()
        recipe_id = _new_id()
        with self._session() as session, session.begin():
            model = RecipeModel(id=recipe_id, status=RecipeStatus.COMPLETED, created_at=now, updated_at=now)
            _apply_fields(model, fields)
            session.add(model)
            session.flush()
            self._insert_links(session, recipe_id, links)
            self._insert_instructions(session, recipe_id, instructions)
        return self.get_recipe(recipe_id, with_relations=True)

    def complete_recipe(
        self,
        recipe_id: str,
        fields: RecipeFields,
        links: Sequence[ResolvedIngredientLink],
        instructions: Sequence[ParsedInstruction],
    ) -> RecipeRecord:
        with self._session() as session, session.begin():
            model = session.get(RecipeModel, recipe_id)
            if model is None:
                raise NotFound(f"Recipe with ID {recipe_id} not found")
            _check_completable(recipe_id, model.status)
            _apply_fields(model, fields)
            model.status = RecipeStatus.COMPLETED
            model.error_message = None
            model.updated_at = datetime.utcnow()
            session.flush()
            self._insert_links(session, recipe_id, links)
            self._insert_instructions(session, recipe_id, instructions)
        return self.get_recipe(recipe_id, with_relations=True)

    def update_status(
        self,
        recipe_id: str,
        status: RecipeStatus,
        fields: Optional[RecipeFields] = None,
        error_message: Optional[str] = None,
    ) -> RecipeRecord:
        with self._session() as session, session.begin():
            model = session.get(RecipeModel, recipe_id)
            if model is None:
                raise NotFound(f"Recipe with ID {recipe_id} not found")
            _check_transition(recipe_id, model.status, status)
            model.status = status
            if fields is not None:
                _apply_fields(model, fields)
            if error_message is not None:
                model.error_message = error_message
            model.updated_at = datetime.utcnow()
            record = _recipe_from_model(model)
        return record

    def get_recipe(self, recipe_id: str, with_relations: bool = False) -> Optional[RecipeRecord]:
        with self._session() as session:
            model = session.get(RecipeModel, recipe_id)
            if not model:
                return None
            record = _recipe_from_model(model)
            if with_relations:
                self._attach_relations(session, record)
            return record

    def list_completed_recipes(self, with_relations: bool = False) -> List[RecipeRecord]:
        with self._session() as session:
            stmt = (
                select(RecipeModel)
                .where(RecipeModel.status == RecipeStatus.COMPLETED)
                .order_by(RecipeModel.created_at)
            )
            records = [_recipe_from_model(m) for m in session.execute(stmt).scalars().all()]
            if with_relations:
                for record in records:
                    self._attach_relations(session, record)
            return records

    def delete_recipe(self, recipe_id: str) -> None:
        with self._session() as session, session.begin():
            model = session.get(RecipeModel, recipe_id)
            if model is None:
                raise NotFound(f"Recipe with ID {recipe_id} not found")
            session.execute(delete(RecipeIngredientModel).where(RecipeIngredientModel.recipe_id == recipe_id))
            session.execute(delete(InstructionModel).where(InstructionModel.recipe_id == recipe_id))
            session.delete(model)

    # endregion

    # region Ingredient catalog
    def get_ingredient(self, ingredient_id: str) -> Optional[IngredientRecord]:
        with self._session() as session:
            model = session.get(IngredientModel, ingredient_id)
            return _ingredient_from_model(model) if model else None

    def find_ingredient_by_normalized_name(self, normalized_name: str) -> Optional[IngredientRecord]:
        with self._session() as session:
            stmt = select(IngredientModel).where(IngredientModel.normalized_name == normalized_name)
            model = session.execute(stmt).scalars().first()
            return _ingredient_from_model(model) if model else None

    def list_ingredients(self) -> List[IngredientRecord]:
        with self._session() as session:
            stmt = select(IngredientModel).order_by(IngredientModel.created_at, IngredientModel.normalized_name)
            return [_ingredient_from_model(m) for m in session.execute(stmt).scalars().all()]

    def create_ingredient(self, name: str, normalized_name: Optional[str] = None) -> IngredientRecord:
        now = datetime.utcnow()
        model = IngredientModel(
            id=_new_id(),
            name=name.strip(),
            normalized_name=normalized_name or normalize_name(name),
            created_at=now,
            updated_at=now,
        )
        try:
            with self._session() as session, session.begin():
                session.add(model)
        except IntegrityError as exc:
            raise PersistenceConflict(f'Ingredient with name "{name}" already exists') from exc
        return _ingredient_from_model(model)

    def update_ingredient(self, ingredient_id: str, name: str) -> IngredientRecord:
        try:
            with self._session() as session, session.begin():
                model = session.get(IngredientModel, ingredient_id)
                if model is None:
                    raise NotFound(f"Ingredient with ID {ingredient_id} not found")
                model.name = name.strip()
                model.normalized_name = normalize_name(name)
                model.updated_at = datetime.utcnow()
                record = _ingredient_from_model(model)
        except IntegrityError as exc:
            raise PersistenceConflict("Ingredient with this name already exists") from exc
        return record

    def delete_ingredient(self, ingredient_id: str) -> None:
        with self._session() as session, session.begin():
            model = session.get(IngredientModel, ingredient_id)
            if model is None:
                raise NotFound(f"Ingredient with ID {ingredient_id} not found")
            usages = self._count_usages(session, ingredient_id)
            if usages:
                raise IngredientInUse(
                    f"Cannot delete ingredient with ID {ingredient_id} because it is used in {usages} recipe(s)"
                )
            session.execute(delete(NutritionModel).where(NutritionModel.ingredient_id == ingredient_id))
            session.delete(model)

    def count_ingredient_usages(self, ingredient_id: str) -> int:
        with self._session() as session:
            return self._count_usages(session, ingredient_id)

    # endregion

    # region Nutrition
    def get_nutrition(self, ingredient_id: str) -> Optional[NutritionRecord]:
        with self._session() as session:
            model = self._nutrition_model(session, ingredient_id)
            return _nutrition_from_model(model) if model else None

    def add_nutrition(self, ingredient_id: str, fields: NutritionFields) -> NutritionRecord:
        _check_nutrition_changes(vars(fields))
        now = datetime.utcnow()
        try:
            with self._session() as session, session.begin():
                if session.get(IngredientModel, ingredient_id) is None:
                    raise NotFound(f"Ingredient with ID {ingredient_id} not found")
                if self._nutrition_model(session, ingredient_id) is not None:
                    raise PersistenceConflict(
                        f"Nutrition data already exists for ingredient {ingredient_id}. Use PATCH to update."
                    )
                model = NutritionModel(
                    id=_new_id(), ingredient_id=ingredient_id, created_at=now, updated_at=now, **vars(fields)
                )
                session.add(model)
        except IntegrityError as exc:
            # Two concurrent adds; the unique ingredient_id column rejects the second.
            raise PersistenceConflict(f"Nutrition data already exists for ingredient {ingredient_id}") from exc
        return _nutrition_from_model(model)

    def update_nutrition(self, ingredient_id: str, changes: Dict[str, Any]) -> NutritionRecord:
        _check_nutrition_changes(changes)
        with self._session() as session, session.begin():
            model = self._existing_nutrition(session, ingredient_id)
            for key, value in changes.items():
                setattr(model, key, value)
            model.updated_at = datetime.utcnow()
            record = _nutrition_from_model(model)
        return record

    def delete_nutrition(self, ingredient_id: str) -> None:
        with self._session() as session, session.begin():
            session.delete(self._existing_nutrition(session, ingredient_id))

    # endregion

    def _nutrition_model(self, session: Session, ingredient_id: str) -> Optional[NutritionModel]:
        stmt = select(NutritionModel).where(NutritionModel.ingredient_id == ingredient_id)
        return session.execute(stmt).scalars().first()

    def _existing_nutrition(self, session: Session, ingredient_id: str) -> NutritionModel:
        if session.get(IngredientModel, ingredient_id) is None:
            raise NotFound(f"Ingredient with ID {ingredient_id} not found")
        model = self._nutrition_model(session, ingredient_id)
        if model is None:
            raise NotFound(f"No nutrition data found for ingredient {ingredient_id}")
        return model

    def _count_usages(self, session: Session, ingredient_id: str) -> int:
        stmt = select(func.count(func.distinct(RecipeIngredientModel.recipe_id))).where(
            RecipeIngredientModel.ingredient_id == ingredient_id
        )
        return int(session.execute(stmt).scalar() or 0)

    def _insert_links(self, session: Session, recipe_id: str, links: Sequence[ResolvedIngredientLink]) -> None:
        wanted = {link.ingredient_id for link in links}
        if wanted:
            stmt = select(IngredientModel.id).where(IngredientModel.id.in_(wanted))
            missing = wanted - set(session.execute(stmt).scalars().all())
            if missing:
                raise NotFound(f"Ingredient with ID {sorted(missing)[0]} not found")
        for position, link in enumerate(links):
            session.add(
                RecipeIngredientModel(
                    id=_new_id(),
                    recipe_id=recipe_id,
                    ingredient_id=link.ingredient_id,
                    position=position,
                    quantity=link.quantity,
                    unit=link.unit,
                )
            )
        session.flush()

    def _insert_instructions(self, session: Session, recipe_id: str, instructions: Sequence[ParsedInstruction]) -> None:
        for position, instruction in enumerate(instructions):
            session.add(
                InstructionModel(
                    id=_new_id(),
                    recipe_id=recipe_id,
                    step=instruction.step,
                    position=position,
                    content=instruction.content,
                )
            )
        session.flush()

    def _attach_relations(self, session: Session, record: RecipeRecord) -> None:
        link_stmt = (
            select(RecipeIngredientModel, IngredientModel.name)
            .join(IngredientModel, IngredientModel.id == RecipeIngredientModel.ingredient_id)
            .where(RecipeIngredientModel.recipe_id == record.id)
            .order_by(RecipeIngredientModel.position)
        )
        record.ingredients = [
            RecipeIngredientRecord(
                id=link.id,
                recipe_id=link.recipe_id,
                ingredient_id=link.ingredient_id,
                ingredient_name=ingredient_name,
                quantity=link.quantity,
                unit=link.unit,
            )
            for link, ingredient_name in session.execute(link_stmt).all()
        ]
        ins_stmt = (
            select(InstructionModel)
            .where(InstructionModel.recipe_id == record.id)
            .order_by(InstructionModel.step, InstructionModel.position)
        )
        record.instructions = [
            InstructionRecord(id=m.id, recipe_id=m.recipe_id, step=m.step, content=m.content)
            for m in session.execute(ins_stmt).scalars().all()
        ]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _apply_fields(model: RecipeModel, fields: RecipeFields) -> None:
    model.name = fields.name
    model.description = fields.description
    model.prep_time = fields.prep_time
    model.cook_time = fields.cook_time
    model.servings = fields.servings


def _recipe_from_model(model: RecipeModel) -> RecipeRecord:
    return RecipeRecord(
        id=model.id,
        status=model.status,
        name=model.name,
        description=model.description,
        prep_time=model.prep_time,
        cook_time=model.cook_time,
        servings=model.servings,
        error_message=model.error_message,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _ingredient_from_model(model: IngredientModel) -> IngredientRecord:
    return IngredientRecord(
        id=model.id,
        name=model.name,
        normalized_name=model.normalized_name,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _nutrition_from_model(model: NutritionModel) -> NutritionRecord:
    return NutritionRecord(
        id=model.id,
        ingredient_id=model.ingredient_id,
        calories_per_100=model.calories_per_100,
        calories_unit=model.calories_unit,
        protein=model.protein,
        carbs=model.carbs,
        fat=model.fat,
        fiber=model.fiber,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )
