"""
Back2U — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from back2u.models.profile import Profile
from back2u.models.item import Item, ItemCategory, ItemStatus
from back2u.models.match import ItemMatch, MatchStatus
from back2u.models.notification import Notification

__all__ = [
    "Profile",
    "Item",
    "ItemCategory",
    "ItemStatus",
    "ItemMatch",
    "MatchStatus",
    "Notification",
]
