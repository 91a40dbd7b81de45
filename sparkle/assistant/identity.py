"""
Assistant Identity Store

Persisted per-user assistant display name. Read once when an operation
starts; written when a rename directive is applied. Last write wins.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from sparkle.models.models import AssistantSession

from .errors import DirectiveApplicationFailure

logger = logging.getLogger(__name__)


class AssistantIdentityStore:
    """
    Reads and writes the ``ai_name`` column of a user's assistant session.

    Args:
        session_factory: Callable returning a context-managed database session
        default_name: Name used when the user has no stored identity
    """

    def __init__(self, session_factory, default_name: str = "Sparkle AI"):
        self.session_factory = session_factory
        self.default_name = default_name

    async def get_name(self, user_id: int) -> str:
        """Current assistant name for a user."""
        with self.session_factory() as session:
            row = session.get(AssistantSession, user_id)
            if row and row.ai_name:
                return row.ai_name
            return self.default_name

    async def set_name(self, user_id: int, name: str) -> None:
        """
        Persist a new assistant name.

        Creates the identity row if the user has none yet.

        Raises:
            DirectiveApplicationFailure: The write failed
        """
        try:
            with self.session_factory() as session:
                row = session.get(AssistantSession, user_id)
                if row is None:
                    row = AssistantSession(user_id=user_id)
                previous = row.ai_name or self.default_name
                row.ai_name = name
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            raise DirectiveApplicationFailure(f"Failed to rename assistant for user {user_id}: {e}") from e

        logger.info(f"Assistant for user {user_id} renamed {previous!r} -> {name!r}")
