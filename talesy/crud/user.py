"""
User lookups.
"""
from __future__ import annotations

from talesy.crud.base import CRUDBase
from talesy.models.user import User


class CRUDUser(CRUDBase[User]):
    """Users are owned by the authentication collaborator; reads only."""


crud_user = CRUDUser(User)
