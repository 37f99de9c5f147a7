import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatqueue.core.config import Settings, get_settings
from chatqueue.core.effects import best_effort
from chatqueue.domain.addressing import address_from_jid, is_group_jid, jid_from_address
from chatqueue.domain.enums import BotSessionStatus, CancellationReason, SessionStatus
from chatqueue.infra.db.models import ChatSession
from chatqueue.infra.gateway.protocol import ChatGateway, UpstreamBotSession
from chatqueue.infra.realtime.publisher import OperatorNotifier
from chatqueue.services.session_service import SessionService
from chatqueue.services.side_effects import notify_customer, set_upstream_bot_status

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[AsyncSession], SessionService]


@dataclass(slots=True, frozen=True)
class ReapCandidate:
    session_id: UUID
    instance: str
    address: str

    @classmethod
    def of(cls, chat_session: ChatSession) -> "ReapCandidate":
        return cls(chat_session.id, chat_session.instance, chat_session.customer_address)


@dataclass(slots=True)
class SweepReport:
    sweep: str
    examined: int = 0
    cancelled: int = 0
    skipped: int = 0
    closed_upstream: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class InactivityReaper:
    """Periodic sweeps that cancel sessions abandoned in the bot or waiting stage.

    Candidates are listed once per sweep and then handled one by one, each in
    its own database session, so a failure on one session is rolled back and
    counted without touching the rest of the sweep.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: ChatGateway,
        notifier: OperatorNotifier | None = None,
        settings: Settings | None = None,
        service_factory: ServiceFactory | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.service_factory = service_factory or self._default_service

    async def run_forever(self, stop: asyncio.Event) -> None:
        interval = self.settings.reaper_interval_seconds
        logger.info("Inactivity reaper started (every %ss)", interval)
        while not stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except TimeoutError:
                continue
        logger.info("Inactivity reaper stopped")

    async def run_once(self) -> list[SweepReport]:
        reports = []
        for sweep in (
            self.sweep_bot_without_session,
            self.sweep_idle_bot_sessions,
            self.sweep_waiting_timeouts,
        ):
            try:
                reports.append(await sweep())
            except Exception:
                logger.exception("Reaper sweep %s aborted", sweep.__name__)
        return reports

    async def sweep_bot_without_session(self, now: datetime | None = None) -> SweepReport:
        report = SweepReport(sweep="bot_without_session")
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.settings.bot_no_session_cutoff_minutes)

        async with self.session_factory() as db:
            rows = await self.service_factory(db).sessions.list_bot_stage_older_than(cutoff)
            candidates = [ReapCandidate.of(row) for row in rows]
        if not candidates:
            return report

        live = await self._live_upstream_jids({item.instance for item in candidates})
        for candidate in candidates:
            report.examined += 1
            live_jids = live.get(candidate.instance)
            if live_jids is None or jid_from_address(candidate.address) in live_jids:
                report.skipped += 1
                continue
            await self._cancel(
                candidate,
                CancellationReason.INACTIVITY_NO_SESSION,
                self.settings.inactivity_notice_text,
                report,
            )

        self._log(report)
        return report

    async def sweep_idle_bot_sessions(self, now: datetime | None = None) -> SweepReport:
        report = SweepReport(sweep="idle_bot_sessions")
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.settings.bot_idle_cutoff_minutes)

        for instance in self.settings.evolution_instances:
            for bot_id in self.settings.evolution_bot_ids:
                upstream = await best_effort(
                    "fetch bot sessions",
                    self.gateway.fetch_bot_sessions(instance, bot_id),
                    instance=instance,
                    bot_id=bot_id,
                )
                for item in upstream or []:
                    if not self._is_idle(item, cutoff):
                        continue
                    report.examined += 1
                    await self._reap_idle_upstream(instance, item, report)

        self._log(report)
        return report

    async def sweep_waiting_timeouts(self, now: datetime | None = None) -> SweepReport:
        report = SweepReport(sweep="waiting_timeouts")
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.settings.waiting_timeout_minutes)

        async with self.session_factory() as db:
            rows = await self.service_factory(db).sessions.list_waiting_older_than(cutoff)
            candidates = [ReapCandidate.of(row) for row in rows]

        for candidate in candidates:
            report.examined += 1
            await self._cancel(
                candidate,
                CancellationReason.WAITING_TIMEOUT,
                self.settings.waiting_timeout_notice_text,
                report,
            )

        self._log(report)
        return report

    async def _reap_idle_upstream(
        self,
        instance: str,
        item: UpstreamBotSession,
        report: SweepReport,
    ) -> None:
        address = address_from_jid(item.remote_jid)
        async with self.session_factory() as db:
            try:
                chat_session = await self.service_factory(db).sessions.get_active_by_address(address)
            except Exception as exc:
                await self._record_failure(db, report, address, exc)
                return
            if chat_session is not None and chat_session.status == SessionStatus.SERVICE:
                report.skipped += 1
                return
            candidate = ReapCandidate.of(chat_session) if chat_session is not None else None

        if candidate is not None:
            await self._cancel(
                candidate,
                CancellationReason.INACTIVITY,
                self.settings.inactivity_notice_text,
                report,
            )
            return

        await set_upstream_bot_status(self.gateway, instance, address, BotSessionStatus.CLOSED)
        await best_effort(
            "inactivity notice",
            self.gateway.send_text(instance, address, self.settings.inactivity_notice_text),
            address=address,
        )
        report.closed_upstream += 1

    async def _cancel(
        self,
        candidate: ReapCandidate,
        reason: CancellationReason,
        notice: str,
        report: SweepReport,
    ) -> None:
        subject = str(candidate.session_id)
        async with self.session_factory() as db:
            service = self.service_factory(db)
            try:
                latest = await service.sessions.get_by_id(candidate.session_id, refresh=True)
            except Exception as exc:
                await self._record_failure(db, report, subject, exc)
                return
            if latest is None or latest.status not in (SessionStatus.BOT, SessionStatus.WAITING):
                report.skipped += 1
                return

            await set_upstream_bot_status(
                self.gateway, candidate.instance, candidate.address, BotSessionStatus.CLOSED
            )
            await notify_customer(self.gateway, latest, notice, f"{reason.value} notice")
            try:
                await service.cancel(candidate.session_id, reason, close_upstream=False)
            except Exception as exc:
                await self._record_failure(db, report, subject, exc)
                return
        report.cancelled += 1

    async def _live_upstream_jids(self, instances: set[str]) -> dict[str, set[str]]:
        """Remote JIDs with a non-closed upstream bot session, per instance.

        An instance whose listing could not be fetched is left out, so its
        sessions are not treated as abandoned.
        """
        live: dict[str, set[str]] = {}
        for instance in instances:
            jids: set[str] = set()
            reachable = True
            for bot_id in self.settings.evolution_bot_ids:
                upstream = await best_effort(
                    "fetch bot sessions",
                    self.gateway.fetch_bot_sessions(instance, bot_id),
                    instance=instance,
                    bot_id=bot_id,
                )
                if upstream is None:
                    reachable = False
                    break
                jids.update(
                    item.remote_jid
                    for item in upstream
                    if item.status != BotSessionStatus.CLOSED.value
                )
            if reachable:
                live[instance] = jids
        return live

    @staticmethod
    def _is_idle(item: UpstreamBotSession, cutoff: datetime) -> bool:
        if not item.is_opened or is_group_jid(item.remote_jid):
            return False
        last_update = item.updated_at or item.created_at
        if last_update is None:
            return False
        if last_update.tzinfo is None:
            last_update = last_update.replace(tzinfo=UTC)
        return last_update < cutoff

    @staticmethod
    async def _record_failure(
        db: AsyncSession,
        report: SweepReport,
        subject: str,
        exc: Exception,
    ) -> None:
        logger.error("Reaper %s failed for %s", report.sweep, subject, exc_info=exc)
        report.failed += 1
        report.errors.append(f"{subject}: {exc}")
        await db.rollback()

    @staticmethod
    def _log(report: SweepReport) -> None:
        if report.examined == 0:
            return
        logger.info(
            "Reaper %s: examined=%d cancelled=%d closed_upstream=%d skipped=%d failed=%d",
            report.sweep,
            report.examined,
            report.cancelled,
            report.closed_upstream,
            report.skipped,
            report.failed,
        )

    def _default_service(self, db: AsyncSession) -> SessionService:
        return SessionService(
            session=db, gateway=self.gateway, notifier=self.notifier, settings=self.settings
        )
