"""Permission policy for extension tool calls"""

from agentconfig.core.permission.models import Decision, PermissionLevel, PermissionRecord
from agentconfig.core.permission.manager import PERMISSIONS_KEY, PermissionManager

__all__ = [
    "Decision",
    "PermissionLevel",
    "PermissionRecord",
    "PERMISSIONS_KEY",
    "PermissionManager",
]
