"""
Toxic Hooks — Lifecycle Events and Enforcement

THIS MODULE DEFINES EVENT HANDLERS (NO USER COMMANDS).

Responsibilities:
- Set up the default and toxic groups at start-up
- Reconcile toxic members when they join
- Translate out-of-band toxic role changes into permanent punishments or clearances
- Gate damage, chat and voice on toxic status

Every hook has a host-independent function that does the work and a
Discord listener in `register(...)` that feeds it. Damage has no
Discord counterpart; `gate_damage` is for a game bridge to call.
"""

from __future__ import annotations

import logging
from typing import Optional, Set, Union

import discord
from discord.ext import commands

from host.discord_host import DiscordHost
from host.interfaces import Messenger, PermissionStore, SessionDirectory
from safety.logging import log_error
from state.punishments import parse_subject_id
from state.storage import StorageError
from state.toxic_engine import RESTRICTION_NOTICE, ToxicEngine
from utils.config import ALLOW_DAMAGE_PERMISSION, DEFAULT_GROUP, TOXIC_GROUP, TOXIC_TIME_PERMISSION

logger = logging.getLogger(__name__)

UNVERIFIED_NOTICE = "You cannot damage players until you have been verified."
TOXIC_JOIN_NOTICE = "You are marked as toxic: no damage, chat, or voice access."
NO_DAMAGE_NOTICE = "You cannot damage other players."


def muted_notice(kind: str) -> str:
    return f"You are {kind}-muted due to toxic behavior."


def setup_permissions(permissions: PermissionStore) -> None:
    permissions.ensure_group(DEFAULT_GROUP)
    permissions.ensure_group(TOXIC_GROUP)
    permissions.grant_group_permission(DEFAULT_GROUP, TOXIC_TIME_PERMISSION)


def on_subject_joined(
    engine: ToxicEngine,
    permissions: PermissionStore,
    messenger: Messenger,
    subject: int,
) -> bool:
    """Returns whether the joining subject is punished."""
    if not permissions.user_has_group(subject, DEFAULT_GROUP):
        permissions.add_user_group(subject, DEFAULT_GROUP)

    try:
        punished = engine.reconcile(subject)
    except StorageError as exc:
        log_error("Failed to persist join reconciliation", error=exc, subject=str(subject))
        punished = engine.is_punished(subject)

    if punished:
        messenger.send(subject, TOXIC_JOIN_NOTICE)
    elif not permissions.user_has_permission(subject, ALLOW_DAMAGE_PERMISSION):
        messenger.send(subject, UNVERIFIED_NOTICE)
    return punished


def on_group_added(
    engine: ToxicEngine,
    directory: SessionDirectory,
    user_id: Union[int, str],
    group: str,
) -> bool:
    if group != engine.toxic_group:
        return False
    subject = parse_subject_id(user_id)
    if subject is None or directory.find(subject) is None:
        return False
    try:
        return engine.apply_permanent(subject) is not None
    except StorageError as exc:
        log_error("Failed to persist permanent punishment", error=exc, subject=str(subject))
        return False


def on_group_removed(engine: ToxicEngine, user_id: Union[int, str], group: str) -> bool:
    if group != engine.toxic_group:
        return False
    subject = parse_subject_id(user_id)
    if subject is None:
        return False
    try:
        return engine.clear_on_group_removed(subject)
    except StorageError as exc:
        log_error("Failed to persist toxic clearance", error=exc, subject=str(subject))
        return False


def on_roles_changed(
    engine: ToxicEngine,
    host: DiscordHost,
    subject: int,
    before_roles: Set[str],
    after_roles: Set[str],
) -> None:
    """Turn a member role diff into group events, skipping the host's own edits."""
    for role_name in sorted(after_roles - before_roles):
        if host.consume_role_echo(subject, role_name, True):
            continue
        group = host.group_for_role(role_name)
        if group:
            on_group_added(engine, host, subject, group)
    for role_name in sorted(before_roles - after_roles):
        if host.consume_role_echo(subject, role_name, False):
            continue
        group = host.group_for_role(role_name)
        if group:
            on_group_removed(engine, subject, group)


def gate_damage(
    engine: ToxicEngine,
    permissions: PermissionStore,
    messenger: Messenger,
    attacker: Optional[int],
    amount: float,
    *,
    victim_is_player: bool,
) -> float:
    """Return the damage to apply. `attacker` is None for NPCs and world damage."""
    if attacker is None:
        return amount
    if engine.is_punished(attacker):
        messenger.send(attacker, RESTRICTION_NOTICE)
        return 0.0
    if not victim_is_player:
        return amount
    if not permissions.user_has_permission(attacker, ALLOW_DAMAGE_PERMISSION):
        messenger.send(attacker, NO_DAMAGE_NOTICE)
        return 0.0
    return amount


def allow_chat(engine: ToxicEngine, messenger: Messenger, subject: int) -> bool:
    if not engine.is_punished(subject):
        return True
    messenger.send(subject, muted_notice("chat"))
    return False


def allow_voice(engine: ToxicEngine, messenger: Messenger, subject: int) -> bool:
    if not engine.is_punished(subject):
        return True
    messenger.send(subject, muted_notice("voice"))
    return False


async def enforce_chat(
    bot: commands.Bot,
    engine: ToxicEngine,
    messenger: Messenger,
    message: discord.Message,
) -> bool:
    """Delete a guild message from a toxic member. Returns whether it was removed."""
    if message.author.bot or message.guild is None:
        return False
    if not engine.is_punished(message.author.id):
        return False
    # Only real commands get through, so toxic members can still run toxic-time.
    ctx = await bot.get_context(message)
    if ctx.valid:
        return False
    if allow_chat(engine, messenger, message.author.id):
        return False
    try:
        await message.delete()
    except (discord.Forbidden, discord.HTTPException):
        logger.warning("Could not delete message from toxic member %s", message.author.id)
        return False
    return True


def register(bot: commands.Bot, engine: ToxicEngine, host: DiscordHost) -> None:
    @bot.listen("on_member_join")
    async def toxic_join_listener(member: discord.Member) -> None:
        if member.bot:
            return
        on_subject_joined(engine, host, host, member.id)

    @bot.listen("on_member_update")
    async def toxic_role_listener(before: discord.Member, after: discord.Member) -> None:
        on_roles_changed(
            engine,
            host,
            after.id,
            {role.name for role in before.roles},
            {role.name for role in after.roles},
        )

    @bot.listen("on_message")
    async def toxic_chat_listener(message: discord.Message) -> None:
        await enforce_chat(bot, engine, host, message)

    @bot.listen("on_voice_state_update")
    async def toxic_voice_listener(
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if member.bot or after.channel is None or before.channel == after.channel:
            return
        if allow_voice(engine, host, member.id):
            return
        try:
            await member.move_to(None, reason="Toxic members may not use voice")
        except (discord.Forbidden, discord.HTTPException):
            logger.warning("Could not disconnect toxic member %s from voice", member.id)
