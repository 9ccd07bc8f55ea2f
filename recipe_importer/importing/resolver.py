from __future__ import annotations

import logging
from typing import Iterable, List

from .errors import PersistenceConflict
from .fuzzy import FuzzyMatcher, normalize_name
from .models import IngredientRecord, ParsedIngredient, ResolvedIngredientLink
from .repository import RecipeRepository

logger = logging.getLogger(__name__)


class IngredientResolver:
    """
    Maps free-form ingredient names onto the persisted catalog.

    Lookup order is exact normalized name, then fuzzy match against every
    catalog entry, then creation. The repository's unique constraint on the
    normalized name is the only guard against two jobs creating the same
    ingredient at once; a lost race is resolved by re-reading the winner.
    """

    def __init__(self, repository: RecipeRepository, threshold: float = 0.3):
        self.repo = repository
        self.threshold = threshold

    def resolve(self, raw_name: str) -> IngredientRecord:
        normalized = normalize_name(raw_name)
        if not normalized:
            raise ValueError("Ingredient name must not be empty")

        existing = self.repo.find_ingredient_by_normalized_name(normalized)
        if existing:
            return existing

        fuzzy_hit = self._fuzzy_lookup(normalized)
        if fuzzy_hit:
            return fuzzy_hit

        display_name = raw_name.strip()
        try:
            created = self.repo.create_ingredient(display_name, normalized)
        except PersistenceConflict:
            winner = self.repo.find_ingredient_by_normalized_name(normalized)
            if winner is None:
                raise
            logger.info("Ingredient '%s' was created concurrently; reusing %s", normalized, winner.id)
            return winner
        logger.info("Created ingredient '%s' (%s)", created.name, created.id)
        return created

    def resolve_all(self, ingredients: Iterable[ParsedIngredient]) -> List[ResolvedIngredientLink]:
        links: List[ResolvedIngredientLink] = []
        for parsed in ingredients:
            ingredient = self.resolve(parsed.name)
            links.append(ResolvedIngredientLink(ingredient_id=ingredient.id, quantity=parsed.quantity, unit=parsed.unit))
        return links

    def _fuzzy_lookup(self, normalized: str):
        catalog = self.repo.list_ingredients()
        if not catalog:
            return None
        matcher = FuzzyMatcher(
            ((ingredient.id, (ingredient.name, ingredient.normalized_name)) for ingredient in catalog),
            threshold=self.threshold,
        )
        match = matcher.find_best_match(normalized)
        if match is None:
            return None
        # Re-read so the caller sees current data rather than the catalog snapshot.
        current = self.repo.get_ingredient(match.item)
        if current is not None:
            logger.info("Fuzzy matched '%s' to '%s' (score %.3f)", normalized, current.name, match.score)
        return current
