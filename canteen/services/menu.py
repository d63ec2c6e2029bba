"""
Menu Store

Per-vendor menu catalogs persisted as one JSON document in a durable
key-value slot:

    {"<vendor_id>": [{"id": ..., "name": ..., "price": "4.99", ...}, ...], ...}

Read policy:
    The in-memory catalog is the source of truth for reads. It is loaded
    once by start() and refreshed only when load_all() is called again;
    get_items() never goes back to storage on its own.

Write policy:
    Every mutation builds a new catalog from a copy, writes the whole thing,
    and swaps it into memory only after the write succeeded. A failed write
    raises PersistenceError and leaves memory at its last-known-good value.

Version: 1.0.0
"""

import copy
import json
import logging
import uuid
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from canteen.core.config import get_settings
from canteen.core.exceptions import ParseError, PersistenceError, ValidationError
from canteen.schemas import MenuItem, MenuItemCreate
from canteen.services.storage.base import BaseKeyValueStore

logger = logging.getLogger(__name__)

Catalog = dict[str, list[MenuItem]]
MenuItemInput = Union[MenuItemCreate, MenuItem, Mapping]

_catalog_adapter = TypeAdapter(Catalog)


def serialize_catalog(catalog: Catalog) -> str:
    """Encode a catalog as JSON text (prices as decimal strings)."""
    return _catalog_adapter.dump_json(catalog).decode("utf-8")


def deserialize_catalog(raw: str) -> Catalog:
    """
    Decode JSON text into a catalog.

    Raises:
        ParseError: If the text is not JSON or does not describe a catalog
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Menu catalog is not valid JSON: {e}") from e

    try:
        return _catalog_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ParseError(f"Menu catalog has an invalid shape: {e.error_count()} error(s)") from e


class MenuStore:
    """
    Menu catalogs of all vendors, backed by one storage slot.

    Attributes:
        storage: Durable key-value backend
        storage_key: Slot holding the serialized catalog
        default_category: Category given to items created without one

    Example:
        >>> store = MenuStore(MockKeyValueStore())
        >>> await store.start()
        >>> item = await store.add_item("v1", {"name": "Salad", "price": "4.99"})
        >>> store.has_items("v1")
        True
    """

    def __init__(
        self,
        storage: BaseKeyValueStore,
        storage_key: Optional[str] = None,
        default_category: Optional[str] = None,
    ):
        settings = get_settings()
        self.storage = storage
        self.storage_key = storage_key or settings.menu_storage_key
        self.default_category = default_category or settings.default_menu_category
        self._catalog: Catalog = {}
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    # =========================================================================
    # LOADING
    # =========================================================================

    async def start(self) -> None:
        """Initial load, run once when the application starts."""
        await self.load_all()
        logger.info(
            f"Menu store ready: {len(self._catalog)} vendor(s), "
            f"{sum(len(items) for items in self._catalog.values())} item(s) "
            f"from {self.storage.provider_name} storage"
        )

    async def load_all(self) -> None:
        """
        Replace the in-memory catalog with the persisted one.

        An empty slot or a corrupt payload loads as an empty catalog.

        Raises:
            PersistenceError: If storage could not be read; the current
                in-memory catalog is kept
        """
        raw = await self.storage.get(self.storage_key)

        if raw is None:
            logger.info(f"No saved menu data under {self.storage_key!r}")
            catalog: Catalog = {}
        else:
            try:
                catalog = deserialize_catalog(raw)
            except ParseError as e:
                logger.warning(f"Discarding corrupt menu data under {self.storage_key!r}: {e}")
                catalog = {}

        self._catalog = catalog
        self._loaded = True

    # =========================================================================
    # READS (in-memory only)
    # =========================================================================

    def get_items(self, vendor_id: str) -> list[MenuItem]:
        """Copies of a vendor's items in insertion order, [] if none."""
        return [item.model_copy() for item in self._catalog.get(vendor_id, [])]

    def get_item(self, vendor_id: str, item_id: str) -> Optional[MenuItem]:
        for item in self._catalog.get(vendor_id, []):
            if item.id == item_id:
                return item.model_copy()
        return None

    def has_items(self, vendor_id: str) -> bool:
        """Whether the vendor has at least one item (gates QR generation)."""
        return len(self._catalog.get(vendor_id, [])) > 0

    def vendors(self) -> list[str]:
        """Vendors with a non-empty catalog."""
        return [vendor_id for vendor_id, items in self._catalog.items() if items]

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def add_item(self, vendor_id: str, item: MenuItemInput) -> MenuItem:
        """
        Create an item with a fresh id and append it to the vendor's catalog.

        available defaults to True and category to the default category.

        Returns:
            MenuItem: The created item, including its id

        Raises:
            ValidationError: If the item is invalid (nothing is written)
            PersistenceError: If the catalog could not be saved
        """
        self._require_vendor(vendor_id)
        fields = self._validate_fields(item)

        new_item = MenuItem(
            **fields.model_dump(exclude={"category"}),
            id=self._new_id(),
            category=fields.category or self.default_category,
        )

        async with self._transaction() as draft:
            draft.setdefault(vendor_id, []).append(new_item)

        logger.info(f"Menu item {new_item.id} ({new_item.name}) added for vendor {vendor_id}")
        return new_item.model_copy()

    async def remove_item(self, vendor_id: str, item_id: str) -> bool:
        """
        Remove an item. Missing vendors or items are a no-op.

        Returns:
            bool: True if an item was removed
        """
        if self.get_item(vendor_id, item_id) is None:
            logger.debug(f"Remove skipped, {item_id} not in vendor {vendor_id}")
            return False

        async with self._transaction() as draft:
            draft[vendor_id] = [entry for entry in draft[vendor_id] if entry.id != item_id]

        logger.info(f"Menu item {item_id} removed from vendor {vendor_id}")
        return True

    async def update_item(
        self,
        vendor_id: str,
        item_id: str,
        replacement: MenuItemInput,
    ) -> Optional[MenuItem]:
        """
        Replace an item in place, keeping its id and position.

        Returns:
            MenuItem: The stored replacement, or None if the item is missing

        Raises:
            ValidationError: If the replacement is invalid
            PersistenceError: If the catalog could not be saved
        """
        fields = self._validate_fields(replacement)
        if self.get_item(vendor_id, item_id) is None:
            return None

        updated = MenuItem(
            **fields.model_dump(exclude={"category"}),
            id=item_id,
            category=fields.category or self.default_category,
        )

        async with self._transaction() as draft:
            draft[vendor_id] = [
                updated if entry.id == item_id else entry
                for entry in draft[vendor_id]
            ]

        logger.info(f"Menu item {item_id} updated for vendor {vendor_id}")
        return updated.model_copy()

    async def set_availability(self, vendor_id: str, item_id: str, available: bool) -> Optional[MenuItem]:
        """Mark an item available or unavailable."""
        current = self.get_item(vendor_id, item_id)
        if current is None:
            return None
        return await self.update_item(
            vendor_id,
            item_id,
            current.model_copy(update={"available": available}),
        )

    async def clear_all(self) -> None:
        """
        Delete every vendor's catalog, in storage and in memory.

        Raises:
            PersistenceError: If the slot could not be removed
        """
        result = await self.storage.remove(self.storage_key)
        if not result.success:
            logger.error(f"Failed to clear menu data: {result.error_message}")
            raise PersistenceError(
                result.error_message or "Failed to clear menu data",
                key=self.storage_key,
                operation="remove",
            )
        self._catalog = {}
        logger.info("All menu data cleared")

    # =========================================================================
    # HELPERS
    # =========================================================================

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Catalog]:
        """
        Yield a deep copy of the catalog to mutate.

        On normal exit the draft is written to storage and, only if the
        write succeeded, becomes the in-memory catalog. If the block raises,
        nothing is written.
        """
        draft = copy.deepcopy(self._catalog)
        yield draft

        result = await self.storage.set(self.storage_key, serialize_catalog(draft))
        if not result.success:
            logger.error(f"Error saving menu data: {result.error_message}")
            raise PersistenceError(
                result.error_message or "Failed to save menu data",
                key=self.storage_key,
                operation="set",
            )

        self._catalog = draft

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    @staticmethod
    def _require_vendor(vendor_id: str) -> None:
        if not isinstance(vendor_id, str) or not vendor_id.strip():
            raise ValidationError("vendor_id is required")

    @staticmethod
    def _validate_fields(item: Any) -> MenuItemCreate:
        """Validate menu input into MenuItemCreate, whatever form it came in."""
        if isinstance(item, MenuItemCreate):
            return item
        if isinstance(item, MenuItem):
            return MenuItemCreate.model_validate(item.model_dump(exclude={"id"}))
        if isinstance(item, Mapping):
            data = {key: value for key, value in item.items() if key != "id"}
            try:
                return MenuItemCreate.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid menu item",
                    errors=e.errors(include_url=False, include_context=False),
                ) from e
        raise ValidationError(f"Unsupported menu item type: {type(item).__name__}")
