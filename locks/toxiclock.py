"""
ToxicLock — Toxic Status Commands

THIS MODULE DEFINES USER COMMANDS.

ToxicLock is the command surface over the toxic engine. It parses
arguments, checks the caller, and turns each command into exactly one
engine call. It holds no punishment logic itself.

Commands in this module:
- set-toxic {id} [duration]: Mark a player toxic, stacking on any active time (operators only)
- clear-toxic {id}: Clear toxic status and restore damage permission (operators only)
- list-toxic: List toxic players with remaining time (operators only)
- toxic-log {id}: Show a player's toxic history (operators only)
- toxic-time: Show your own remaining toxic time

Durations are "2h", "30m", or a bare number of minutes; anything else
falls back to the default punishment length.

Registered explicitly via `register(bot, ...)`.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from discord.ext import commands

from host.interfaces import PermissionStore, SessionDirectory
from safety import controls
from safety.logging import LogContext, log_admin_command, log_error
from state.punishments import parse_subject_id
from state.storage import StorageError
from state.toxic_engine import ToxicEngine
from utils.config import TOXIC_TIME_PERMISSION, Settings
from utils.durations import DEFAULT_PUNISHMENT_SECONDS, format_duration, parse_duration
from utils.text import chunk_lines

MAX_REPLY_LENGTH = 1900

SET_USAGE = "Usage: set-toxic <playerID> [duration]"
CLEAR_USAGE = "Usage: clear-toxic <playerID>"
LOG_USAGE = "Usage: toxic-log <playerID>"
INVALID_ID = "Invalid player ID."
NOT_FOUND = "Player not found."
NON_POSITIVE_DURATION = "Duration must be greater than zero."
SAVE_FAILED = "The change was applied but could not be saved. Check the server log."
NONE_TOXIC = "No players are currently toxic."
NOT_TOXIC = "You are not currently toxic."


def format_remaining(remaining: float) -> str:
    if math.isinf(remaining):
        return "Permanent"
    return format_duration(remaining)


def _parse_target(args: Sequence[str], usage: str) -> Tuple[Optional[int], Optional[str]]:
    if not args or not args[0]:
        return None, usage
    subject = parse_subject_id(args[0])
    if subject is None:
        return None, INVALID_ID
    return subject, None


def set_toxic(
    engine: ToxicEngine,
    directory: SessionDirectory,
    args: Sequence[str],
    *,
    operator: bool,
    default_duration: int = DEFAULT_PUNISHMENT_SECONDS,
    context: Optional[LogContext] = None,
) -> str:
    if not operator:
        return controls.PERMISSION_DENIED
    subject, error = _parse_target(args, SET_USAGE)
    if error:
        return error

    target = directory.find(subject)
    if target is None:
        return NOT_FOUND

    duration = parse_duration(args[1] if len(args) > 1 else None, default_duration)
    if duration <= 0:
        return NON_POSITIVE_DURATION

    try:
        engine.apply(subject, duration)
    except StorageError as exc:
        log_error("set-toxic could not be saved", context=context, error=exc)
        return SAVE_FAILED

    log_admin_command("set-toxic", context=context, duration_seconds=duration)
    return f"{target.display_name} marked toxic (+{format_duration(duration)})."


def clear_toxic(
    engine: ToxicEngine,
    directory: SessionDirectory,
    args: Sequence[str],
    *,
    operator: bool,
    context: Optional[LogContext] = None,
) -> str:
    if not operator:
        return controls.PERMISSION_DENIED
    subject, error = _parse_target(args, CLEAR_USAGE)
    if error:
        return error

    if engine.get_record(subject) is None and directory.find(subject) is None:
        return NOT_FOUND

    try:
        engine.clear(subject)
    except StorageError as exc:
        log_error("clear-toxic could not be saved", context=context, error=exc)
        return SAVE_FAILED

    log_admin_command("clear-toxic", context=context)
    return f"Toxic status cleared for {subject}."


def list_toxic(engine: ToxicEngine, *, operator: bool) -> str:
    if not operator:
        return controls.PERMISSION_DENIED
    active = sorted(engine.active_punishments())
    if not active:
        return NONE_TOXIC
    return "\n".join(f"{subject} - {format_remaining(remaining)}" for subject, remaining in active)


def toxic_log(engine: ToxicEngine, args: Sequence[str], *, operator: bool) -> str:
    if not operator:
        return controls.PERMISSION_DENIED
    subject, error = _parse_target(args, LOG_USAGE)
    if error:
        return error

    entries = engine.history(subject)
    if not entries:
        return f"No toxic history found for {subject}."
    lines = [f"Toxic log for {subject} ({len(entries)} entries):"]
    lines.extend(f" - {entry}" for entry in entries)
    return "\n".join(lines)


def toxic_time(engine: ToxicEngine, permissions: PermissionStore, subject: int) -> str:
    if not permissions.user_has_permission(subject, TOXIC_TIME_PERMISSION):
        return controls.PERMISSION_DENIED
    remaining = engine.remaining(subject)
    if remaining is None:
        return NOT_TOXIC
    return f"Remaining: {format_remaining(remaining)}."


def _args(*values: Optional[str]) -> List[str]:
    return [value for value in values if value is not None]


def _context(ctx: commands.Context, command: str, target: Optional[str] = None) -> LogContext:
    return LogContext(
        actor_id=str(ctx.author.id),
        actor_name=str(ctx.author),
        target_id=target,
        command=command,
    )


async def _reply(ctx: commands.Context, text: str) -> None:
    for chunk in chunk_lines(text.splitlines(), MAX_REPLY_LENGTH):
        await ctx.reply(chunk, mention_author=False)


def register(
    bot: commands.Bot,
    engine: ToxicEngine,
    directory: SessionDirectory,
    permissions: PermissionStore,
    settings: Settings,
) -> None:
    def _operator(ctx: commands.Context) -> bool:
        return controls.is_operator(ctx.author, owner_id=settings.owner_id)

    @bot.command(name="set-toxic", aliases=["settoxic"])
    async def set_toxic_cmd(
        ctx: commands.Context,
        target: Optional[str] = None,
        duration: Optional[str] = None,
    ) -> None:
        reply = set_toxic(
            engine,
            directory,
            _args(target, duration),
            operator=_operator(ctx),
            default_duration=settings.default_duration,
            context=_context(ctx, "set-toxic", target),
        )
        await _reply(ctx, reply)

    @bot.command(name="clear-toxic", aliases=["cleartoxic"])
    async def clear_toxic_cmd(ctx: commands.Context, target: Optional[str] = None) -> None:
        reply = clear_toxic(
            engine,
            directory,
            _args(target),
            operator=_operator(ctx),
            context=_context(ctx, "clear-toxic", target),
        )
        await _reply(ctx, reply)

    @bot.command(name="list-toxic", aliases=["toxiclist"])
    async def list_toxic_cmd(ctx: commands.Context) -> None:
        await _reply(ctx, list_toxic(engine, operator=_operator(ctx)))

    @bot.command(name="toxic-log", aliases=["toxiclog"])
    async def toxic_log_cmd(ctx: commands.Context, target: Optional[str] = None) -> None:
        await _reply(ctx, toxic_log(engine, _args(target), operator=_operator(ctx)))

    @bot.command(name="toxic-time", aliases=["toxictime"])
    async def toxic_time_cmd(ctx: commands.Context) -> None:
        await _reply(ctx, toxic_time(engine, permissions, ctx.author.id))
