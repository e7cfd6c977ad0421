"""
Safety Controls — Operator Checks for Admin Commands

THIS MODULE DEFINES NO COMMANDS.

Admin commands (set-toxic, clear-toxic, list-toxic, toxic-log) are
operator-only. An operator is the configured bot owner or a guild member
with the administrator permission. Callers that fail the check get a
clear refusal instead of a silent no-op.

The owner id is read once into `Settings.owner_id` and passed in here.
"""

from __future__ import annotations

from typing import Any, Optional

PERMISSION_DENIED = "You do not have permission to use this command."


def is_owner(actor_id: Optional[int], owner_id: Optional[int]) -> bool:
    return owner_id is not None and actor_id == owner_id


def is_operator(member: Any, *, owner_id: Optional[int]) -> bool:
    """Return True for the bot owner or a member holding the administrator permission."""
    if member is None:
        return False
    if is_owner(getattr(member, "id", None), owner_id):
        return True
    permissions = getattr(member, "guild_permissions", None)
    return bool(getattr(permissions, "administrator", False))
