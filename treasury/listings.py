"""Marketplace listing store."""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .exceptions import ConflictError, InvalidAmountError, ItemNotFoundError, OutOfStockError
from .models import ItemCategory, MarketplaceItem
from .storage import InMemoryStorage


class MarketplaceStore:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def create_item(
        self,
        name: str,
        price: Decimal,
        stock: int,
        description: str = "",
        category: ItemCategory = ItemCategory.GOODS,
        image_url: Optional[str] = None,
    ) -> MarketplaceItem:
        if price <= 0:
            raise InvalidAmountError("Item price must be greater than 0")
        if stock < 0:
            raise InvalidAmountError("Item stock cannot be negative")

        record = {
            "id": uuid4(),
            "name": name,
            "description": description,
            "price": price,
            "stock": stock,
            "category": category,
            "image_url": image_url,
        }
        self.storage.put(self.storage.items, record["id"], record)
        return MarketplaceItem(**record)

    def get(self, item_id: UUID) -> MarketplaceItem:
        record = self.storage.items.get(item_id)
        if not record:
            raise ItemNotFoundError(f"Item {item_id} not found")
        return MarketplaceItem(**record)

    def list_items(self) -> list[MarketplaceItem]:
        with self.storage.atomic():
            records = list(self.storage.items.values())
        return [MarketplaceItem(**r) for r in records]

    def decrement_stock(self, item_id: UUID, amount: int, expected_stock: int) -> MarketplaceItem:
        with self.storage.atomic():
            record = self.storage.items.get(item_id)
            if record is None:
                raise ItemNotFoundError(f"Item {item_id} not found")
            if record["stock"] < amount:
                raise OutOfStockError(f"{record['name']} is out of stock")
            if record["stock"] != expected_stock:
                raise ConflictError(f"Stock of {record['name']} changed concurrently")

            updated = {**record, "stock": record["stock"] - amount}
            self.storage.put(self.storage.items, item_id, updated)
        return MarketplaceItem(**updated)
