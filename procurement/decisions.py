"""
Human decision channel for price conflicts.

The reconciliation engine hands a PriceConflict to a decider and awaits the
answer.  Three deciders exist:

  FixedDecider     answers every conflict with the same decision (batch runs)
  DecisionBroker   parks each conflict on a future until an operator resolves
                   it through the API
  (CLI)            main.py prompts on the terminal
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from models.warehouse import PriceConflict, PriceDecision
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

PriceDecider = Callable[[PriceConflict], Awaitable[PriceDecision]]


def parse_decision(value: Union[str, PriceDecision]) -> PriceDecision:
    """Accept "update_price" / "UPDATE_PRICE" / "update" style spellings."""
    if isinstance(value, PriceDecision):
        return value
    key = str(value).strip().lower().replace("-", "_")
    aliases = {
        "update": PriceDecision.UPDATE_PRICE,
        "keep": PriceDecision.KEEP_PRICE,
    }
    if key in aliases:
        return aliases[key]
    try:
        return PriceDecision(key)
    except ValueError:
        choices = ", ".join(d.value for d in PriceDecision)
        raise ValidationError(f"Unknown price decision {value!r} (expected one of {choices})")


class FixedDecider:
    """Resolve every conflict the same way, without asking anyone."""

    def __init__(self, decision: Union[str, PriceDecision]) -> None:
        self.decision = parse_decision(decision)

    async def __call__(self, conflict: PriceConflict) -> PriceDecision:
        logger.info(
            "Price conflict on %s (%.2f -> %.2f) resolved automatically: %s",
            conflict.sku, conflict.old_price, conflict.new_price, self.decision.value,
        )
        return self.decision


class DecisionBroker:
    """
    Parks price conflicts until an operator answers them.

    request() is the decider handed to the engine; it suspends the caller on
    a future keyed by the conflict id.  resolve() fires that future.  No
    timeout is applied: a conflict waits until someone answers it or the
    reconciliation task is cancelled.
    """

    def __init__(self) -> None:
        self._waiting: dict[str, tuple[PriceConflict, asyncio.Future]] = {}
        self._listeners: list[asyncio.Future] = []

    async def request(self, conflict: PriceConflict) -> PriceDecision:
        future = asyncio.get_running_loop().create_future()
        self._waiting[conflict.id] = (conflict, future)
        logger.info("Price conflict %s on %s waiting for a decision", conflict.id, conflict.sku)
        for listener in self._listeners:
            if not listener.done():
                listener.set_result(conflict)
        try:
            return await future
        finally:
            self._waiting.pop(conflict.id, None)

    __call__ = request

    def pending(self, order_id: Optional[str] = None) -> list[PriceConflict]:
        return [
            conflict for conflict, future in self._waiting.values()
            if not future.done() and (order_id is None or conflict.order_id == order_id)
        ]

    async def wait_for_conflict(self, order_id: Optional[str] = None) -> PriceConflict:
        """Return the first unanswered conflict, waiting for one if there is none."""
        while True:
            waiting = self.pending(order_id)
            if waiting:
                return waiting[0]
            listener = asyncio.get_running_loop().create_future()
            self._listeners.append(listener)
            try:
                await listener
            finally:
                self._listeners.remove(listener)

    def resolve(self, conflict_id: str, decision: Union[str, PriceDecision]) -> PriceConflict:
        decision = parse_decision(decision)
        entry = self._waiting.pop(conflict_id, None)
        if entry is None or entry[1].done():
            raise NotFound(f"No pending price conflict {conflict_id}", code="CONFLICT_NOT_FOUND")
        conflict, future = entry
        future.set_result(decision)
        logger.info("Price conflict %s on %s resolved: %s", conflict_id, conflict.sku, decision.value)
        return conflict
