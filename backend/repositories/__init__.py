from .community import CommunityRepository
from . import models

__all__ = ["CommunityRepository", "models"]
