from typing import Optional, Set

from sqlalchemy.orm import Session

from gearguard.models.models import TeamMember


class TeamMembershipResolver:
    """Answers team membership questions straight from ``team_members``.

    Nothing is cached: a membership added or removed is visible to the
    next call.
    """

    def __init__(self, db: Session):
        self.db = db

    def is_member(self, user_id: Optional[int], team_id: Optional[int]) -> bool:
        if user_id is None or team_id is None:
            return False
        row = (
            self.db.query(TeamMember.id)
            .filter(TeamMember.user_id == user_id, TeamMember.team_id == team_id)
            .first()
        )
        return row is not None

    def teams_of(self, user_id: Optional[int]) -> Set[int]:
        if user_id is None:
            return set()
        return {
            r[0]
            for r in self.db.query(TeamMember.team_id)
            .filter(TeamMember.user_id == user_id)
            .all()
        }
