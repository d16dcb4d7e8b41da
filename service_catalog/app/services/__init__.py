"""
Entity services.

Thin async services over the Store. Reads go through the two-tier cache;
every successful write hands the entity to the invalidation coordinator.
"""

from .activity import ActivityService
from .colleges import CollegeService
from .cutoffs import CutoffService
from .dashboard import DashboardService
from .news import NewsService
from .placements import PlacementService

__all__ = ["ActivityService", "CollegeService", "CutoffService", "DashboardService", "NewsService", "PlacementService"]
