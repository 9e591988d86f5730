"""
Business logic services.
"""

from src.services.addon_sync_scheduler import AddonSyncScheduler, build_leader_lock

__all__ = ["AddonSyncScheduler", "build_leader_lock"]
