"""
Position Monitor - take profit / stop loss / timeout watcher

Polls the USD price of a held token on a fixed interval and returns
exactly one terminal result per position.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from .exceptions import MonitorStoppedError

logger = logging.getLogger(__name__)


PriceFetcher = Callable[[], Awaitable[Optional[float]]]


class MonitorEvent(Enum):
    TAKE_PROFIT_HIT = "take_profit"
    STOP_LOSS_HIT = "stop_loss"
    TIMEOUT_HIT = "timeout"


@dataclass
class MonitorResult:
    """
    Terminal event with the price that triggered it

    `price` is None only for a timeout where no read ever succeeded.
    """
    event: MonitorEvent
    price: Optional[float]
    elapsed: float


class PositionMonitor:
    """
    Watches one open position

    Thresholds are relative to `entry_price`:
        take profit: price >= entry * (1 + take_profit_pct / 100)
        stop loss:   price <= entry * (1 - stop_loss_pct / 100)

    A price of 0 (or None) is a failed read, it is logged and the next
    tick tries again.
    """

    def __init__(
        self,
        price_fetcher: PriceFetcher,
        entry_price: float,
        take_profit_pct: float,
        stop_loss_pct: float,
        timeout_sec: float,
        interval: float = 5.0,
    ):
        self.price_fetcher = price_fetcher
        self.entry_price = entry_price
        self.take_profit_pct = take_profit_pct
        self.stop_loss_pct = stop_loss_pct
        self.timeout_sec = timeout_sec
        self.interval = interval

        self.elapsed = 0.0
        self.last_price: Optional[float] = None
        self.result: Optional[MonitorResult] = None
        self.stopped = False
        self._stop_event = asyncio.Event()

    @property
    def take_profit_price(self) -> float:
        return self.entry_price * (1 + self.take_profit_pct / 100)

    @property
    def stop_loss_price(self) -> float:
        return self.entry_price * (1 - self.stop_loss_pct / 100)

    async def _fetch_price(self) -> Optional[float]:
        price = await self.price_fetcher()
        if not price:
            logger.warning("Price read returned %r, retrying next tick", price)
            return None
        self.last_price = price
        return price

    def _finish(self, event: MonitorEvent, price: Optional[float]) -> MonitorResult:
        self.stopped = True
        self.result = MonitorResult(event=event, price=price, elapsed=self.elapsed)
        logger.info("%s at %s after %ss", event.value, price, self.elapsed)
        return self.result

    async def tick(self) -> Optional[MonitorResult]:
        """
        Run one polling step

        Returns:
            MonitorResult if a threshold or the timeout was hit, else None

        Raises:
            MonitorStoppedError: the monitor already stopped
        """
        if self.stopped:
            raise MonitorStoppedError("Position monitor already stopped")

        if self.elapsed >= self.timeout_sec:
            price = await self._fetch_price()
            return self._finish(MonitorEvent.TIMEOUT_HIT, price or self.last_price)

        price = await self._fetch_price()
        result = None
        if price is not None:
            logger.info(
                "Price %s (entry %s, tp %s, sl %s)",
                price, self.entry_price, self.take_profit_price, self.stop_loss_price,
            )
            if price >= self.take_profit_price:
                result = self._finish(MonitorEvent.TAKE_PROFIT_HIT, price)
            elif price <= self.stop_loss_price:
                result = self._finish(MonitorEvent.STOP_LOSS_HIT, price)

        self.elapsed += self.interval
        return result

    async def run(self) -> MonitorResult:
        """Tick every `interval` seconds until a terminal result"""
        while True:
            result = await self.tick()
            if result:
                return result
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    def stop(self):
        """Stop the monitor, an in-flight run() raises MonitorStoppedError"""
        self.stopped = True
        self._stop_event.set()
