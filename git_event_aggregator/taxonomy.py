"""
Action Taxonomy Module

Canonical action names ("push", "merge_request.opened", ...) shared by
every platform and project.
"""
import logging
from typing import List

from sqlalchemy import select

from git_event_aggregator.database import insert_if_absent, session_scope
from git_event_aggregator.errors import MalformedItemError
from git_event_aggregator.models import GitAction

logger = logging.getLogger(__name__)


class ActionTaxonomy:
    def __init__(self, engine):
        self.engine = engine

    def resolve_or_create_action(self, name: str, session=None) -> int:
        """
        Return the id of the action called ``name``, creating it if needed.

        Safe to call concurrently for the same name: the unique constraint
        on the name decides which insert wins, the others become no-ops.
        """
        if not name or not name.strip():
            raise MalformedItemError("Action name must not be empty")
        name = name.strip()
        with session_scope(self.engine, session) as s:
            insert_if_absent(s, GitAction, {"name": name}, ["name"])
            action_id = s.execute(
                select(GitAction.id).where(GitAction.name == name)
            ).scalar_one()
        logger.debug(f"Resolved action '{name}' to id {action_id}")
        return action_id

    def list_actions(self, session=None) -> List[str]:
        with session_scope(self.engine, session) as s:
            return list(s.execute(select(GitAction.name).order_by(GitAction.id)).scalars())
