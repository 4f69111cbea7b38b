"""Budget envelopes keyed by ``service:<id>`` / ``task:<id>``."""

import logging
from pathlib import Path
from typing import Any

from autobot.budget.types import DEFAULT_ALERT_THRESHOLD, Budget, BudgetCheck
from autobot.messaging import InProcessMessageBus, MessageType
from autobot.persistence import JsonStore

logger = logging.getLogger(__name__)

BUDGETS_FILENAME = "budgets.json"

BudgetDocument = dict[str, dict[str, Any]]


class BudgetNotFoundError(LookupError):
    """No envelope has been allocated for the key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No budget allocated for: {key}")
        self.key = key


class BudgetManager:
    """Allocates, checks and deducts spending envelopes.

    All reads go to the store so every caller sees the latest ledger; there
    is no in-memory cache to drift from disk.
    """

    def __init__(
        self,
        data_dir: Path,
        bus: InProcessMessageBus,
        default_alert_threshold: float = DEFAULT_ALERT_THRESHOLD,
    ) -> None:
        self._store: JsonStore[BudgetDocument] = JsonStore(
            data_dir / BUDGETS_FILENAME, dict
        )
        self._bus = bus
        self._default_alert_threshold = default_alert_threshold

    @property
    def store(self) -> JsonStore[BudgetDocument]:
        return self._store

    async def allocate(
        self, key: str, amount: float, alert_threshold: float | None = None
    ) -> Budget:
        """Set the allocation for ``key``, keeping any spend already recorded."""
        if amount < 0:
            raise ValueError("Budget amount must not be negative")
        threshold = (
            alert_threshold
            if alert_threshold is not None
            else self._default_alert_threshold
        )
        result: Budget | None = None

        def apply(doc: BudgetDocument) -> None:
            nonlocal result
            existing = doc.get(key)
            spent = float(existing.get("spent", 0.0)) if existing else 0.0
            result = Budget(
                key=key, allocated=amount, spent=spent, alert_threshold=threshold
            )
            doc[key] = result.to_dict()

        await self._store.mutate(apply)
        assert result is not None
        logger.info(
            "budget_allocated",
            extra={"budget.key": key, "budget.allocated": amount},
        )
        return result

    async def add_budget(self, key: str, amount: float) -> Budget:
        """Increase an allocation (allocating it when absent)."""
        if amount <= 0:
            raise ValueError("Amount to add must be positive")
        if await self.get_budget(key) is None:
            return await self.allocate(key, amount)

        result: Budget | None = None

        def apply(doc: BudgetDocument) -> None:
            nonlocal result
            budget = Budget.from_dict(doc[key])
            budget.allocated += amount
            doc[key] = budget.to_dict()
            result = budget

        await self._store.mutate(apply)
        assert result is not None
        await self._bus.emit(
            MessageType.BUDGET_ADDED,
            key,
            {"budget_key": key, "amount": amount, "budget": result.to_dict()},
        )
        return result

    async def check(self, key: str) -> BudgetCheck:
        """Whether ``key`` may start work. No envelope means denied."""
        budget = await self.get_budget(key)
        if budget is None:
            return BudgetCheck(
                allowed=False,
                budget=Budget(
                    key=key,
                    allocated=0.0,
                    alert_threshold=self._default_alert_threshold,
                ),
            )
        return BudgetCheck(allowed=not budget.is_exhausted, budget=budget)

    async def deduct(self, key: str, amount: float) -> Budget:
        """Record spend against ``key`` and publish threshold events.

        Raises:
            BudgetNotFoundError: No envelope exists for ``key``.
        """
        before: Budget | None = None
        after: Budget | None = None

        def apply(doc: BudgetDocument) -> None:
            nonlocal before, after
            raw = doc.get(key)
            if raw is None:
                return
            before = Budget.from_dict(raw)
            after = Budget.from_dict(raw)
            after.spent += amount
            doc[key] = after.to_dict()

        await self._store.mutate(apply)
        if before is None or after is None:
            raise BudgetNotFoundError(key)

        alert_at = after.allocated * after.alert_threshold
        if before.spent < alert_at <= after.spent and not after.is_exhausted:
            logger.warning(
                "budget_alert",
                extra={"budget.key": key, "budget.remaining": after.remaining},
            )
            await self._bus.emit(
                MessageType.BUDGET_ALERT,
                key,
                {"budget_key": key, "budget": after.to_dict()},
            )
        if after.is_exhausted:
            logger.warning(
                "budget_exhausted",
                extra={"budget.key": key, "budget.spent": after.spent},
            )
            await self._bus.emit(
                MessageType.BUDGET_EXHAUSTED,
                key,
                {"budget_key": key, "budget": after.to_dict()},
            )
        return after

    async def get_budget(self, key: str) -> Budget | None:
        doc = await self._store.load()
        raw = doc.get(key)
        return Budget.from_dict(raw) if raw else None

    async def get_all_budgets(self) -> list[Budget]:
        doc = await self._store.load()
        return [Budget.from_dict(raw) for raw in doc.values()]
