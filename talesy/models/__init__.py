"""
ORM model package. Import all models here so Alembic autogenerate
can discover every table through the shared Base metadata.
"""
from talesy.models.user import User  # noqa: F401
from talesy.models.post import Post  # noqa: F401
from talesy.models.comment import Comment, CommentLike  # noqa: F401
