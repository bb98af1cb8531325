"""Menu browsing: categories, products and sponsors."""

import logging
from typing import Optional

from .backend import BackendClient
from .models import Category, Product, Sponsor

logger = logging.getLogger(__name__)


class MenuService:
    """Read-only access to the storefront menu."""

    def __init__(self, backend: BackendClient) -> None:
        self.categories = backend.table("categorias")
        self.products = backend.table("produtos")
        self.sponsors = backend.table("patrocinadores")

    async def list_categories(self) -> list[Category]:
        rows = await self.categories.select(order="ordem")
        return [Category.model_validate(row) for row in rows]

    async def featured_products(self, limit: int = 5) -> list[Product]:
        """
        Products highlighted on the home page.

        Args:
            limit: Maximum number of products

        Returns:
            Featured products that are available
        """
        rows = await self.products.select(
            filters={"destaque": True, "disponivel": True}, limit=limit
        )
        return [Product.model_validate(row) for row in rows]

    async def products_by_category(self, category_id: str) -> list[Product]:
        logger.info(f"Listing products of category {category_id}")
        rows = await self.products.select(
            filters={"categoria_id": category_id, "disponivel": True}, order="nome"
        )
        return [Product.model_validate(row) for row in rows]

    async def get_category(self, category_id: str) -> Optional[Category]:
        row = await self.categories.select_maybe_one(filters={"id": category_id})
        return Category.model_validate(row) if row else None

    async def get_product(self, product_id: str) -> Optional[Product]:
        row = await self.products.select_maybe_one(filters={"id": product_id})
        if row is None:
            logger.warning(f"Product {product_id} not found")
            return None
        return Product.model_validate(row)

    async def list_sponsors(self) -> list[Sponsor]:
        rows = await self.sponsors.select(filters={"ativo": True}, order="ordem")
        return [Sponsor.model_validate(row) for row in rows]
