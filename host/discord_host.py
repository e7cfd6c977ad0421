"""
Discord Host — Guild Roles as Groups and Permissions

THIS MODULE DEFINES NO COMMANDS.

Binds the host protocols to one Discord guild:
- Groups are roles ("toxic" -> "Toxic"); "default" has no role and is
  held by every member of the guild
- User permissions are roles ("toxicbot.allowdamage" -> "Verified")
- Group-level grants are kept in memory
- Members are the session directory; offline members are still found
- Notices are delivered by direct message

Role edits and direct messages are Discord API calls. They are scheduled
on the running event loop; failures are logged, never raised. Discord
reports the resulting role changes back through on_member_update.

The member cache only changes when that report arrives, so role edits
are queued per (member, role) until Discord echoes them back. Membership
checks read the queue first. An edit that has not been sent yet is
cancelled by an opposite edit; one already sent is followed in order.
Echoes of the host's own edits are consumed by `consume_role_echo` and
never reach the punishment engine as out-of-band changes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Dict, List, Optional, Set, Tuple

import discord
from discord.ext import commands

from host.interfaces import Subject
from safety.logging import log_error
from utils.config import ALLOW_DAMAGE_PERMISSION, DEFAULT_GROUP, TOXIC_GROUP, Settings

logger = logging.getLogger(__name__)

ROLE_REASON = "ToxicBot toxic status"

RoleKey = Tuple[int, str]


@dataclass(eq=False)
class _RoleEdit:
    present: bool
    sent: bool = False
    task: Optional[asyncio.Task] = None


class DiscordHost:
    def __init__(self, bot: commands.Bot, settings: Settings) -> None:
        self._bot = bot
        self._guild_id = settings.guild_id
        self._group_roles: Dict[str, Optional[str]] = {
            DEFAULT_GROUP: None,
            TOXIC_GROUP: settings.toxic_role,
        }
        self._permission_roles: Dict[str, str] = {
            ALLOW_DAMAGE_PERMISSION: settings.verified_role,
        }
        self._group_permissions: Dict[str, Set[str]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._role_edits: Dict[RoleKey, List[_RoleEdit]] = {}

    # ---------------------------
    # Guild helpers
    # ---------------------------

    @property
    def guild(self) -> Optional[discord.Guild]:
        if self._guild_id is not None:
            return self._bot.get_guild(self._guild_id)
        guilds = self._bot.guilds
        return guilds[0] if guilds else None

    def _member(self, subject: int) -> Optional[discord.Member]:
        guild = self.guild
        if guild is None:
            return None
        return guild.get_member(subject)

    def _role(self, name: str) -> Optional[discord.Role]:
        guild = self.guild
        if guild is None:
            return None
        return discord.utils.get(guild.roles, name=name)

    def _role_name_for_group(self, group: str) -> Optional[str]:
        return self._group_roles.get(group, group)

    def group_for_role(self, role_name: str) -> Optional[str]:
        for group, mapped in self._group_roles.items():
            if mapped == role_name:
                return group
        return None

    def _spawn(self, coro: Awaitable[object]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule(self, call: Awaitable[object], description: str) -> asyncio.Task:
        async def _run() -> None:
            try:
                await call
            except (discord.Forbidden, discord.HTTPException) as exc:
                log_error(f"Discord call failed: {description}", error=exc)

        return self._spawn(_run())

    def _member_has_role(self, member: discord.Member, role_name: str) -> bool:
        return any(role.name == role_name for role in member.roles)

    # ---------------------------
    # Role edits
    # ---------------------------

    def _has_role(self, member: discord.Member, role_name: str) -> bool:
        """Role state with this host's unconfirmed edits applied over the member cache."""
        edits = self._role_edits.get((member.id, role_name))
        if edits:
            return edits[-1].present
        return self._member_has_role(member, role_name)

    def _edit_role(self, subject: int, role_name: str, present: bool) -> None:
        member = self._member(subject)
        role = self._role(role_name)
        if member is None or role is None:
            if present:
                logger.warning("Cannot add role %s to %s: member or role missing", role_name, subject)
            return
        if self._has_role(member, role_name) == present:
            return

        key = (subject, role_name)
        edits = self._role_edits.setdefault(key, [])
        # Every queued edit flips the role, so dropping an unsent one is the same as this edit.
        if edits and not edits[-1].sent:
            edits.pop().task.cancel()
            if not edits:
                del self._role_edits[key]
            return

        edit = _RoleEdit(present)
        previous = edits[-1].task if edits else None
        edit.task = self._spawn(self._run_role_edit(key, edit, member, role, previous))
        edits.append(edit)

    async def _run_role_edit(
        self,
        key: RoleKey,
        edit: _RoleEdit,
        member: discord.Member,
        role: discord.Role,
        previous: Optional[asyncio.Task],
    ) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        edit.sent = True
        action = "add" if edit.present else "remove"
        try:
            if edit.present:
                await member.add_roles(role, reason=ROLE_REASON)
            else:
                await member.remove_roles(role, reason=ROLE_REASON)
        except (discord.Forbidden, discord.HTTPException) as exc:
            self._forget_role_edit(key, edit)
            log_error(f"Discord call failed: {action} {role.name} for {member.id}", error=exc)

    def _forget_role_edit(self, key: RoleKey, edit: _RoleEdit) -> None:
        edits = self._role_edits.get(key)
        if not edits or edit not in edits:
            return
        edits.remove(edit)
        if not edits:
            del self._role_edits[key]

    def consume_role_echo(self, subject: int, role_name: str, present: bool) -> bool:
        """
        Match a role change reported by Discord against this host's own sent
        edits. Returns True if the change was ours and should be ignored.
        """
        for edit in self._role_edits.get((subject, role_name), []):
            if edit.sent and edit.present == present:
                self._forget_role_edit((subject, role_name), edit)
                return True
        return False

    def pending_role_edits(self, subject: int, role_name: str) -> int:
        return len(self._role_edits.get((subject, role_name), []))

    def _add_role(self, subject: int, role_name: str) -> None:
        self._edit_role(subject, role_name, True)

    def _remove_role(self, subject: int, role_name: str) -> None:
        self._edit_role(subject, role_name, False)

    # ---------------------------
    # PermissionStore
    # ---------------------------

    def ensure_group(self, group: str) -> None:
        role_name = self._role_name_for_group(group)
        guild = self.guild
        if role_name is None or guild is None or self._role(role_name) is not None:
            return
        self._schedule(guild.create_role(name=role_name, reason=ROLE_REASON), f"create role {role_name}")

    def grant_group_permission(self, group: str, permission: str) -> None:
        self._group_permissions.setdefault(group, set()).add(permission)

    def user_has_group(self, subject: int, group: str) -> bool:
        member = self._member(subject)
        if member is None:
            return False
        role_name = self._role_name_for_group(group)
        if role_name is None:
            return True
        return self._has_role(member, role_name)

    def add_user_group(self, subject: int, group: str) -> None:
        role_name = self._role_name_for_group(group)
        if role_name is not None:
            self._add_role(subject, role_name)

    def remove_user_group(self, subject: int, group: str) -> None:
        role_name = self._role_name_for_group(group)
        if role_name is not None:
            self._remove_role(subject, role_name)

    def user_has_permission(self, subject: int, permission: str) -> bool:
        member = self._member(subject)
        if member is None:
            return False
        role_name = self._permission_roles.get(permission)
        if role_name is not None and self._has_role(member, role_name):
            return True
        return any(
            permission in granted and self.user_has_group(subject, group)
            for group, granted in self._group_permissions.items()
        )

    def grant_user_permission(self, subject: int, permission: str) -> None:
        role_name = self._permission_roles.get(permission)
        if role_name is None:
            logger.warning("Permission %s has no role; cannot grant to %s", permission, subject)
            return
        self._add_role(subject, role_name)

    def revoke_user_permission(self, subject: int, permission: str) -> None:
        role_name = self._permission_roles.get(permission)
        if role_name is not None:
            self._remove_role(subject, role_name)

    # ---------------------------
    # SessionDirectory
    # ---------------------------

    def find(self, subject: int) -> Optional[Subject]:
        member = self._member(subject)
        if member is None:
            return None
        return Subject(
            id=member.id,
            display_name=member.display_name,
            connected=member.status != discord.Status.offline,
        )

    # ---------------------------
    # Messenger
    # ---------------------------

    def send(self, subject: int, text: str) -> bool:
        member = self._member(subject)
        if member is None:
            return False
        self._schedule(member.send(text), f"message {subject}")
        return True
