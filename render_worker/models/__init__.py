from render_worker.models.base import Base
from render_worker.models.credit_transaction import CreditTransaction
from render_worker.models.media import Media, MediaAsset, MediaStep
from render_worker.models.project import Project
from render_worker.models.user import User

__all__ = [
    "Base",
    "User",
    "Project",
    "Media",
    "MediaStep",
    "MediaAsset",
    "CreditTransaction",
]
