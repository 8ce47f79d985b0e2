"""Permission levels and decisions for extension tool calls

Levels are stored per extension (extension-wide default) and optionally
per tool. The effective level for a call is resolved:

    tool record > extension record > global default
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PermissionLevel(str, Enum):
    """
    Trust level granted to an extension or one of its tools.

    - ALWAYS_ALLOW: run without asking
    - ASK_ONCE: confirm the first call in a session, then run freely
    - ASK_EVERY_TIME: confirm every call
    - DENY: never run
    """

    ALWAYS_ALLOW = "always_allow"
    ASK_ONCE = "ask_once"
    ASK_EVERY_TIME = "ask_every_time"
    DENY = "deny"


class Decision(str, Enum):
    """Outcome of a permission check"""

    ALLOW = "allow"
    # Kept for callers that render it; PermissionManager.decide never returns it
    ALLOW_ONCE_THEN_ASK = "allow_once_then_ask"
    DENY = "deny"
    REQUIRE_CONFIRMATION = "require_confirmation"


@dataclass(frozen=True)
class PermissionRecord:
    """
    One stored permission.

    tool_name is None for the extension-wide default.
    """
    extension_name: str
    tool_name: Optional[str]
    level: PermissionLevel

    @property
    def is_extension_default(self) -> bool:
        return self.tool_name is None
