"""
CacheInvalidation - Turns "entity X changed" into pattern deletions across
the ephemeral and durable caches.

Key conventions:
- "<entity>:<id>" and "<entity>:<id>:*" for one entity and its sub-resources
- "<entity>:all*" / "<entity>:list*" for collections of that entity
- derived keys (e.g. "featured_products") for collections owned elsewhere
  that can contain the entity

All knowledge of which derived collections depend on which entity lives in
RECIPES; call sites only say which entity changed.
"""

from dataclasses import dataclass, field

from loguru import logger

from resilience.services.cache import EphemeralCache
from resilience.services.durable_cache import DurableCache

ID_SLOT = "{id}"


@dataclass(frozen=True)
class EntityRecipe:
    """Patterns to delete when an entity (or all of them) changes."""

    entity: str
    # "{id}" is replaced by the entity id, or by "*" when invalidating all
    derived: tuple[str, ...] = field(default_factory=tuple)

    def patterns_for(self, entity_id: str) -> list[str]:
        own = [
            f"{self.entity}:{entity_id}",
            f"{self.entity}:{entity_id}:*",
            f"{self.entity}:all*",
            f"{self.entity}:list*",
        ]
        return own + [p.replace(ID_SLOT, entity_id) for p in self.derived]

    def patterns_for_all(self) -> list[str]:
        return [f"{self.entity}*"] + [p.replace(ID_SLOT, "*") for p in self.derived]


RECIPES: dict[str, EntityRecipe] = {
    # A featured flag or price change alters the featured collection, and any
    # category listing may hold the product
    "products": EntityRecipe(
        "products", derived=("featured_products*", "products:category:*")
    ),
    "categories": EntityRecipe("categories", derived=("products:category:{id}*",)),
    # The owning user is unknown from an order id, so every per-user list goes
    "orders": EntityRecipe("orders", derived=("orders:user:*",)),
    "users": EntityRecipe("users", derived=("orders:user:{id}*",)),
}


class CacheInvalidation:
    """
    Domain-aware invalidation over both caches.

    Usage:
        invalidation = CacheInvalidation(cache, durable_cache)

        # After an admin edits product 42
        invalidation.invalidate_product("42")
    """

    def __init__(
        self,
        cache: EphemeralCache,
        durable_cache: DurableCache | None = None,
        recipes: dict[str, EntityRecipe] | None = None,
    ):
        self._cache = cache
        self._durable = durable_cache
        self._recipes = recipes if recipes is not None else RECIPES

    def invalidate(self, entity: str, entity_id: str | None = None) -> int:
        """
        Invalidate one entity, or every entity of its kind when no id is given.

        Returns:
            Number of entries removed across both caches

        Raises:
            ValueError: If no recipe exists for ``entity``
        """
        recipe = self._recipes.get(entity)
        if recipe is None:
            raise ValueError(f"No invalidation recipe for entity '{entity}'")

        if entity_id is None:
            patterns = recipe.patterns_for_all()
        else:
            patterns = recipe.patterns_for(str(entity_id))

        removed = self._apply(patterns)
        target = entity if entity_id is None else f"{entity}:{entity_id}"
        logger.debug(f"Invalidated {target}: {removed} entries removed")
        return removed

    def _apply(self, patterns: list[str]) -> int:
        removed = 0
        for pattern in patterns:
            removed += self._cache.invalidate_pattern(pattern)
            if self._durable is not None:
                removed += self._durable.invalidate_pattern(pattern)
        return removed

    # Products

    def invalidate_all_products(self) -> int:
        return self.invalidate("products")

    def invalidate_product(self, product_id: str) -> int:
        return self.invalidate("products", product_id)

    # Categories

    def invalidate_all_categories(self) -> int:
        return self.invalidate("categories")

    def invalidate_category(self, category_id: str) -> int:
        return self.invalidate("categories", category_id)

    # Orders

    def invalidate_all_orders(self) -> int:
        return self.invalidate("orders")

    def invalidate_order(self, order_id: str) -> int:
        return self.invalidate("orders", order_id)

    # Users

    def invalidate_all_users(self) -> int:
        return self.invalidate("users")

    def invalidate_user(self, user_id: str) -> int:
        return self.invalidate("users", user_id)
