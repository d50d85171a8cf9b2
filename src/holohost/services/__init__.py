"""Instance orchestration services."""

from holohost.services.broadcaster import RealtimeBroadcaster
from holohost.services.instance_manager import InstanceManager

__all__ = ["InstanceManager", "RealtimeBroadcaster"]
