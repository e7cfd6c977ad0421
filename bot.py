"""
ToxicBot — Toxic Status Moderation Bot (Main Entry Point)

This file initializes and runs ToxicBot.

Responsibilities of this file ONLY:
- Create the Discord client/bot instance
- Load configuration and environment variables
- Build the toxic engine and its stores
- Explicitly register command suites and hooks from modules
- Start the expiry sweep
- Start the bot, and save both snapshots on shutdown

IMPORTANT ARCHITECTURE RULES:
- Modules do NOT self-register.
- All command registration is explicit and occurs here.
- All behavior logic lives in modules, not in this file.

ToxicBot tracks timed and permanent toxic punishments:
- Toxic members may not damage others, chat, or use voice
- Durations stack additively
- The damage permission is saved on punishment and restored on clearance
- Every punishment is kept in a per-member history for admins
"""

from __future__ import annotations

import logging

import discord
from discord.ext import commands
from dotenv import load_dotenv

from host.discord_host import DiscordHost
from locks import expiry_loop, hooks, toxiclock
from state.audit_log import AuditLog
from state.punishments import PunishmentTable
from state.storage import JsonDocumentStore
from state.toxic_engine import ToxicEngine
from utils.config import Settings

logger = logging.getLogger("toxicbot")


def _build_intents() -> discord.Intents:
    intents = discord.Intents.all()
    return intents


def _build_bot(settings: Settings) -> commands.Bot:
    intents = _build_intents()
    return commands.Bot(command_prefix=settings.command_prefix, intents=intents)


def build_engine(settings: Settings, host: DiscordHost) -> ToxicEngine:
    store = JsonDocumentStore(settings.data_dir)
    engine = ToxicEngine(
        PunishmentTable(store, settings.punishments_document),
        AuditLog(store, settings.audit_document),
        host,
        host,
    )
    engine.load()
    return engine


def _register_modules(bot: commands.Bot, engine: ToxicEngine, host: DiscordHost, settings: Settings) -> None:
    toxiclock.register(bot, engine, host, host, settings)
    hooks.register(bot, engine, host)


def main() -> None:
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    if not settings.token:
        raise RuntimeError("Missing DISCORD_TOKEN environment variable.")

    bot = _build_bot(settings)
    host = DiscordHost(bot, settings)
    engine = build_engine(settings, host)

    _register_modules(bot, engine, host, settings)

    @bot.event
    async def on_ready() -> None:
        logger.info("ToxicBot connected as %s", bot.user)
        hooks.setup_permissions(host)
        await expiry_loop.start(engine, settings.sweep_interval)

    try:
        bot.run(settings.token)
    finally:
        engine.flush()


if __name__ == "__main__":
    main()
