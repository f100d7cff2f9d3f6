import logging
import uuid
from typing import Dict, Optional

from clock import SystemClock, system_clock
from config import DEFAULT_CATEGORY_COLOR
from database import db
from errors import ClarvuError, NotFoundError, Unauthenticated, ValidationError
from models.entities import ActionResult, Category
from models.state import AppState

logger = logging.getLogger(__name__)


class CategoryService:
    """Category actions.

    Names are unique per user after normalisation (lowercase, stripped):
    creation rejects duplicates, listing drops them and
    ``cleanup_duplicates`` removes the ones that slipped into storage.
    """

    def __init__(self, state: AppState, clock: SystemClock = system_clock) -> None:
        self.state = state
        self.clock = clock

    def _user(self) -> str:
        if self.state.user_id is None:
            raise Unauthenticated()
        return self.state.user_id

    async def list_categories(self) -> ActionResult:
        """Load categories (deduplicated) into the category store."""
        try:
            rows = await db.load_categories(self._user())
        except ClarvuError as e:
            logger.warning(f"list_categories failed: {e}")
            return ActionResult.fail(str(e))
        self.state.categories.set_from_server(Category.from_dict(r) for r in rows)
        return ActionResult.ok(data=self.state.categories.categories)

    async def create_category(
        self,
        name: str,
        color: str = DEFAULT_CATEGORY_COLOR,
        icon: Optional[str] = None,
        category_type: Optional[str] = None,
    ) -> ActionResult:
        try:
            user_id = self._user()
            clean = (name or "").strip()
            if not clean:
                raise ValidationError("Category name is required")
            existing = [Category.from_dict(r) for r in await db.load_categories(user_id)]
            probe = Category(id="", name=clean, color=color)
            if any(c.normalized_name == probe.normalized_name for c in existing):
                raise ValidationError(f"Category '{clean}' already exists")
            category = Category(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=clean,
                color=color or DEFAULT_CATEGORY_COLOR,
                icon=icon,
                type=category_type,
                created_at=self.clock.now(),
            )
            await db.save_category(category.to_dict())
        except ClarvuError as e:
            logger.warning(f"create_category failed: {e}")
            return ActionResult.fail(str(e))
        self.state.categories.add_or_update(category)
        return ActionResult.ok(data=category)

    async def delete_category(self, category_id: str) -> ActionResult:
        """Delete a category; its tasks become uncategorised."""
        try:
            deleted = await db.delete_categories(self._user(), [category_id])
            if deleted == 0:
                raise NotFoundError(f"Category {category_id} not found")
        except ClarvuError as e:
            logger.warning(f"delete_category failed: {e}")
            return ActionResult.fail(str(e))
        self.state.categories.remove(category_id)
        for task in self.state.tasks.tasks:
            if task.category_id == category_id:
                task.category_id = None
        return ActionResult.ok()

    async def cleanup_duplicates(self) -> ActionResult:
        """Delete duplicate categories, keeping the oldest row per name.

        Tasks of a deleted duplicate move to the kept category.
        ``result.data`` is the number of categories deleted.
        """
        try:
            user_id = self._user()
            rows = await db.load_categories(user_id)
            keepers: Dict[str, str] = {}
            duplicates: Dict[str, str] = {}
            for category in (Category.from_dict(r) for r in rows):
                key = category.normalized_name
                if key in keepers:
                    duplicates[category.id] = keepers[key]
                else:
                    keepers[key] = category.id
            deleted = await db.merge_categories(user_id, duplicates)
        except ClarvuError as e:
            logger.warning(f"cleanup_duplicates failed: {e}")
            return ActionResult.fail(str(e))
        if deleted:
            logger.info(f"Removed {deleted} duplicate categories")
        for task in self.state.tasks.tasks:
            if task.category_id in duplicates:
                task.category_id = duplicates[task.category_id]
        return ActionResult.ok(data=deleted)

    async def seed_defaults(self) -> int:
        """Give a new user the default categories. Returns how many were added."""
        return await db.seed_default_categories(self._user(), self.clock.now())
