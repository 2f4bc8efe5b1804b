from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import discord
from discord.ext import commands
from dotenv import load_dotenv

from .aggregation import build_daily_person_report, build_monthly_person_report, summarize
from .audit import AuditLog
from .clock import Clock, utc_now
from .commands import register_commands
from .config import Config, load_config
from .db import Database
from .errors import InvalidSignal, PersistenceFailure
from .models import ActivityCode, OutcomeKind
from .reporter import Reporter
from .signals import help_text, parse_signal
from .tracker import AttendanceTracker

REPLY_MENTIONS = discord.AllowedMentions(everyone=False, roles=False, users=True, replied_user=False)


class AttendanceBot(commands.Bot):
    def __init__(self, config: Config, db: Database) -> None:
        intents = discord.Intents.none()
        intents.guilds = True
        intents.guild_messages = True
        intents.dm_messages = True
        intents.message_content = True

        super().__init__(command_prefix="!", intents=intents)

        self.config = config
        self.db = db
        self.clock = Clock(config.timezone)
        self.tracker = AttendanceTracker(db=db, audit=AuditLog(config.audit_log_path))
        self.reporter = Reporter(self.clock)

        self.logger = logging.getLogger("attendance-bot")

    async def setup_hook(self) -> None:
        # Warm the open-session mirror before any message is handled.
        await asyncio.to_thread(self.tracker.load_all)
        register_commands(self)
        await self.tree.sync(guild=discord.Object(id=self.config.guild_id))

    async def on_ready(self) -> None:
        self.logger.info("Connected as %s (%s)", self.user, self.user.id if self.user else "unknown")

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return

        bot_user_id = self.user.id if self.user else None
        try:
            parsed = parse_signal(
                message.content,
                bot_user_id,
                require_mention=self.config.require_mention,
                allow_plain_codes=self.config.allow_plain_codes,
            )
        except InvalidSignal:
            await message.reply(
                f"{message.author.mention} Only attendance inputs are understood here.\n{help_text()}",
                allowed_mentions=REPLY_MENTIONS,
            )
            return

        if parsed is None:
            return

        if message.guild is None:
            await message.reply("Please use this in a server channel 🙂")
            return

        if not self.config.tracks_channel(message.channel.id):
            self.logger.debug("Ignoring signal in untracked channel %s", message.channel.id)
            return

        code, source = parsed
        author = message.author
        now = utc_now()

        try:
            outcome = await asyncio.to_thread(
                self.tracker.apply,
                message.channel.id,
                author.id,
                code,
                now,
                display_name=author.display_name,
                handle=author.name,
                source=source,
                message_id=message.id,
            )
        except PersistenceFailure:
            self.logger.exception("Failed to record %s for user=%s", code.name, author.id)
            await message.reply("Could not log right now. Please try again.")
            return

        await message.reply(
            self.reporter.outcome_message(author.mention, outcome),
            allowed_mentions=REPLY_MENTIONS,
        )

        if code is ActivityCode.CHECK_OUT and OutcomeKind.EVENT_LOGGED in outcome.kinds:
            try:
                report = await asyncio.to_thread(
                    self.personal_report, message.channel.id, author.id, f"@{author.name}", now
                )
            except PersistenceFailure:
                self.logger.exception("Failed to build checkout report for user=%s", author.id)
                return
            if report:
                await message.reply(report, allowed_mentions=discord.AllowedMentions.none())

    def group_report(self, group_id: int, now_utc: datetime | None = None) -> str | None:
        now = now_utc or utc_now()
        week_start = self.clock.start_of_week(now)
        events = self.db.query_since(week_start, group_id=group_id)
        if not events:
            return None

        today = summarize(events, self.clock.start_of_day(now))
        week = summarize(events, week_start)
        sessions = [session for session in self.tracker.active_sessions() if session.group_id == group_id]
        return self.reporter.build_report(today, week, sessions)

    def personal_report(
        self,
        group_id: int,
        person_id: int,
        who: str,
        now_utc: datetime | None = None,
    ) -> str | None:
        now = now_utc or utc_now()
        events = self.db.query_since(self.clock.start_of_month(now), group_id=group_id, person_id=person_id)

        daily = build_daily_person_report(events, person_id, since_utc=self.clock.start_of_day(now))
        if daily is None:
            return None
        monthly = build_monthly_person_report(events, person_id, self.clock)
        return self.reporter.build_personal_report(who, daily, monthly)

    async def close(self) -> None:
        self.db.close()
        await super().close()


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main() -> None:
    load_dotenv()
    configure_logging()

    config = load_config()
    db = Database(config.database_path)
    db.initialize()

    bot = AttendanceBot(config=config, db=db)
    bot.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
