"""
Fusion hub that merges concurrently arriving provider results into one
current best estimate per key.

Each active key owns a merge loop task plus one pump task per provider.
The merge loop is the single owner of the key's state; it replaces the
estimate as a whole frozen value and fans it out to subscriber queues, so
snapshot readers never observe a partially updated estimate.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field

from .contracts import Clock, Estimate, HealthStatus, Provider, Result, utcnow
from .selection import supersedes

logger = logging.getLogger(__name__)


class _Subscriber:
    """Bounded per-subscriber queue; `None` marks the end of the stream."""

    def __init__(self, maxsize: int) -> None:
        self.queue: asyncio.Queue[Estimate | None] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def push(self, item: Estimate | None) -> None:
        while self.queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self.queue.get_nowait()
                self.dropped += 1
        self.queue.put_nowait(item)


@dataclass
class _KeyState:
    key: str
    estimate: Estimate
    inbox: asyncio.Queue[tuple[str, Result]]
    contributions: dict[str, Result] = field(default_factory=dict)
    subscribers: set[_Subscriber] = field(default_factory=set)
    pump_tasks: list[asyncio.Task[None]] = field(default_factory=list)
    loop_task: asyncio.Task[None] | None = None
    rejected_total: int = 0


class FusionHub:
    """
    Registry of providers and owner of one merge loop per subscribed key.

    The first subscriber of a key starts the loop; the last one to leave
    tears it down and discards the key's state.
    """

    def __init__(
        self,
        providers: Iterable[Provider] = (),
        *,
        sweep_interval: float = 1.0,
        subscriber_queue_size: int = 16,
        inbox_size: int = 64,
        clock: Clock | None = None,
    ) -> None:
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        self._providers: dict[str, Provider] = {}
        self._states: dict[str, _KeyState] = {}
        self._sweep_interval = sweep_interval
        self._subscriber_queue_size = max(1, subscriber_queue_size)
        self._inbox_size = inbox_size
        self._clock = clock or utcnow
        for provider in providers:
            self.register(provider)

    @property
    def providers(self) -> list[str]:
        return list(self._providers)

    def register(self, provider: Provider) -> None:
        """Add a provider; it joins merge loops started after registration."""
        if provider.name in self._providers:
            raise ValueError(f"Provider '{provider.name}' is already registered.")
        self._providers[provider.name] = provider
        logger.info("Registered provider %s", provider.name)

    def active_keys(self) -> list[str]:
        return list(self._states)

    def current_estimate(self, key: str) -> Estimate:
        """Return a snapshot of the current estimate for `key`."""
        state = self._states.get(key)
        if state is None:
            return Estimate(key=key, changed_at=self._clock())
        estimate = state.estimate
        if estimate.result is not None and estimate.result.is_expired(self._clock()):
            return Estimate(key=key, changed_at=estimate.result.expires_at, reason="expired")
        return estimate

    def contributions(self, key: str) -> dict[str, Result]:
        """Latest result per source for `key`, winners and losers alike."""
        state = self._states.get(key)
        return dict(state.contributions) if state else {}

    async def subscribe(self, key: str) -> AsyncIterator[Estimate]:
        """
        Yield the current estimate for `key`, then every change to it.

        Wrap the iterator in `contextlib.aclosing` (or cancel the consuming
        task) to leave; the stream also ends when the hub is stopped.
        """
        state = self._states.get(key) or self._activate(key)
        subscriber = _Subscriber(self._subscriber_queue_size)
        state.subscribers.add(subscriber)
        subscriber.push(self.current_estimate(key))
        try:
            while True:
                estimate = await subscriber.queue.get()
                if estimate is None:
                    return
                yield estimate
        finally:
            state.subscribers.discard(subscriber)
            if subscriber.dropped:
                logger.warning(
                    "Subscriber for %s fell behind; %d stale estimates discarded",
                    key,
                    subscriber.dropped,
                )
            if not state.subscribers and self._states.get(key) is state:
                await self._deactivate(key)

    async def stop(self) -> None:
        """Close every subscriber stream and tear down all merge loops."""
        for key in list(self._states):
            state = self._states[key]
            for subscriber in list(state.subscribers):
                subscriber.push(None)
            await self._deactivate(key)
        logger.info("Fusion hub stopped.")

    async def health(self) -> HealthStatus:
        keys: dict[str, dict[str, object]] = {}
        status = "healthy"
        for key, state in self._states.items():
            estimate = self.current_estimate(key)
            if not estimate.is_known:
                status = "degraded"
            keys[key] = {
                "source": estimate.result.source if estimate.result else None,
                "contributions": sorted(state.contributions),
                "subscribers": len(state.subscribers),
                "rejected_total": state.rejected_total,
            }
        return HealthStatus(status=status, details={"providers": self.providers, "keys": keys})

    def _activate(self, key: str) -> _KeyState:
        state = _KeyState(
            key=key,
            estimate=Estimate(key=key, changed_at=self._clock()),
            inbox=asyncio.Queue(maxsize=self._inbox_size),
        )
        self._states[key] = state
        for provider in self._providers.values():
            task = asyncio.create_task(
                self._pump(provider, state), name=f"locus-pump-{provider.name}-{key}"
            )
            state.pump_tasks.append(task)
        state.loop_task = asyncio.create_task(self._merge_loop(state), name=f"locus-merge-{key}")
        logger.info("Started merge loop for %s with %d providers", key, len(state.pump_tasks))
        return state

    async def _deactivate(self, key: str) -> None:
        state = self._states.pop(key, None)
        if state is None:
            return
        tasks = [*state.pump_tasks]
        if state.loop_task is not None:
            tasks.append(state.loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Stopped merge loop for %s", key)

    async def _pump(self, provider: Provider, state: _KeyState) -> None:
        """Drain one provider stream into the key's inbox."""
        stream = provider.lookup_stream(state.key)
        try:
            async for result in stream:
                await state.inbox.put((provider.name, result))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Provider %s stream failed for %s", provider.name, state.key)
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()
        logger.error("Provider %s stream for %s ended unexpectedly", provider.name, state.key)

    async def _merge_loop(self, state: _KeyState) -> None:
        loop = asyncio.get_running_loop()
        next_sweep = loop.time() + self._sweep_interval
        while True:
            remaining = next_sweep - loop.time()
            if remaining <= 0:
                self._sweep(state)
                next_sweep = loop.time() + self._sweep_interval
                continue
            try:
                async with asyncio.timeout(remaining):
                    source, result = await state.inbox.get()
            except TimeoutError:
                continue
            self._ingest(state, source, result)

    def _ingest(self, state: _KeyState, source: str, result: Result) -> None:
        if result.key != state.key or result.source != source:
            state.rejected_total += 1
            logger.error(
                "Provider %s emitted result for key=%s source=%s on stream for %s; dropped",
                source,
                result.key,
                result.source,
                state.key,
            )
            return
        now = self._clock()
        if result.is_expired(now):
            logger.debug("Discarding already expired result from %s for %s", source, state.key)
            return
        # Contributions are diagnostics only; selection compares against the estimate.
        state.contributions[source] = result
        current = state.estimate.result
        if not supersedes(result, current, now):
            logger.debug(
                "Result from %s (confidence %.2f, accuracy %.0fm) lost to %s for %s",
                source,
                result.confidence,
                result.accuracy_meters,
                current.source if current else None,
                state.key,
            )
            return
        if result != current:
            self._publish(state, result, "selected")

    def _sweep(self, state: _KeyState) -> None:
        now = self._clock()
        for source, result in list(state.contributions.items()):
            if result.is_expired(now):
                del state.contributions[source]
                logger.debug("Contribution from %s for %s expired", source, state.key)
        current = state.estimate.result
        if current is None or not current.is_expired(now):
            return
        logger.info("Estimate for %s from %s expired", state.key, current.source)
        self._publish(state, None, "expired")

    def _publish(self, state: _KeyState, result: Result | None, reason: str) -> None:
        estimate = Estimate(key=state.key, result=result, changed_at=self._clock(), reason=reason)
        state.estimate = estimate
        if result is not None:
            logger.info(
                "Estimate for %s now from %s: %.5f,%.5f ±%.0fm (confidence %.2f)",
                state.key,
                result.source,
                result.lat,
                result.lon,
                result.accuracy_meters,
                result.confidence,
            )
        for subscriber in list(state.subscribers):
            subscriber.push(estimate)


__all__ = ["FusionHub"]
