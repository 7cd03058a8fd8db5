"""Repository instances, one per aggregate."""

from sitegate.db.repositories.escrow import EscrowRepository, escrow_repo
from sitegate.db.repositories.events import EventRepository, event_repo
from sitegate.db.repositories.invites import InviteRepository, invite_repo
from sitegate.db.repositories.ml import MLRepository, ml_repo
from sitegate.db.repositories.projects import ProjectRepository, project_repo

__all__ = [
    "EscrowRepository",
    "EventRepository",
    "InviteRepository",
    "MLRepository",
    "ProjectRepository",
    "escrow_repo",
    "event_repo",
    "invite_repo",
    "ml_repo",
    "project_repo",
]
