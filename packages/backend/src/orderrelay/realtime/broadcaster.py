"""Broadcaster — fan one decoded event out to every ready client.

Learn: The message is serialized once and sent to all ready sessions
concurrently, each send bounded by a timeout, so one slow or dead
client can't hold up the others or the upstream notification path.
Failures are counted and logged, never raised. Sessions that aren't
ready are skipped — pruning them is the registry's job.
"""

import asyncio
from dataclasses import dataclass

import structlog

from orderrelay.realtime.events import DecodeResult
from orderrelay.realtime.registry import ClientRegistry, ClientSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class BroadcastReport:
    delivered: int
    total: int


class Broadcaster:
    """Delivers change events to the sessions in a ClientRegistry."""

    def __init__(self, registry: ClientRegistry, send_timeout: float = 5.0):
        self.registry = registry
        self.send_timeout = send_timeout

    async def broadcast(self, result: DecodeResult) -> BroadcastReport:
        message = result.to_wire()
        sessions = self.registry.snapshot()

        if not sessions:
            logger.info("relay.broadcast_skipped", reason="no clients connected")
            return BroadcastReport(delivered=0, total=0)

        ready = [s for s in sessions if s.is_ready()]
        outcomes = await asyncio.gather(
            *(self._deliver(session, message) for session in ready)
        )
        report = BroadcastReport(delivered=sum(outcomes), total=len(sessions))

        logger.info(
            "relay.broadcast",
            delivered=report.delivered,
            total=report.total,
            summary=f"{report.delivered}/{report.total}",
        )
        return report

    async def _deliver(self, session: ClientSession, message: str) -> bool:
        try:
            await session.send(message, self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("relay.send_timeout", session=session.id, timeout=self.send_timeout)
            return False
        except Exception as e:
            logger.warning("relay.send_failed", session=session.id, error=str(e))
            return False
        return True
