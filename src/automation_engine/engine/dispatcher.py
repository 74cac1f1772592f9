"""
Action dispatch.

Turns every action of every matched rule into one outbound message. Actions
with a delay go to the delayed exchange carrying an `x-delay` header and
only reach the scheduled-actions queue once it elapses; the rest go straight
to the actions exchange keyed by action type.

The delay is read from `config.delayMinutes`; actions without it are
immediate. Rules written against the schema-level `delay` field (seconds)
are only delayed by it when `schema_delay` is switched on, and even then
only when `delayMinutes` is absent.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog

from ..exceptions import DispatchError
from ..messaging import DELAY_HEADER, EventBusBackend, MessageSerializer
from ..models import ActionDispatchMessage, AutomationAction, AutomationRule, DispatchPlan
from ..observability import EngineMetrics

logger = structlog.get_logger(__name__)


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def action_delay_ms(action: AutomationAction, schema_delay: bool = False) -> int | None:
    """Delay before the action may run, in milliseconds; None for immediate actions."""
    if "delayMinutes" in action.config:
        minutes = _positive_number(action.config["delayMinutes"])
        return int(minutes * 60_000) if minutes else None
    if not schema_delay:
        return None
    seconds = _positive_number(action.delay)
    return int(seconds * 1000) if seconds else None


class ActionDispatcher:
    """Publishes action messages for matched rules."""

    def __init__(
        self,
        backend: EventBusBackend,
        actions_exchange: str,
        delayed_exchange: str,
        scheduled_queue: str,
        parallel: bool = False,
        schema_delay: bool = False,
        serializer: MessageSerializer | None = None,
        metrics: EngineMetrics | None = None,
    ):
        self.backend = backend
        self.actions_exchange = actions_exchange
        self.delayed_exchange = delayed_exchange
        self.scheduled_queue = scheduled_queue
        self.parallel = parallel
        self.schema_delay = schema_delay
        self.serializer = serializer or MessageSerializer()
        self.metrics = metrics

    def plan(
        self,
        rules: list[AutomationRule],
        event_body: dict[str, Any],
        related_doc: dict[str, Any],
        timestamp: datetime | None = None,
    ) -> list[DispatchPlan]:
        """One plan per action, rules in order and actions in array order."""
        plans = []
        for rule in rules:
            for action in rule.actions:
                message = ActionDispatchMessage.build(
                    action.type,
                    action.config,
                    event_body,
                    related_doc,
                    timestamp=timestamp or datetime.now(timezone.utc),
                )
                delay_ms = action_delay_ms(action, self.schema_delay)
                if delay_ms is not None:
                    plans.append(
                        DispatchPlan(
                            exchange=self.delayed_exchange,
                            routing_key=self.scheduled_queue,
                            message=message,
                            delay_ms=delay_ms,
                            headers={DELAY_HEADER: delay_ms},
                        )
                    )
                else:
                    plans.append(
                        DispatchPlan(
                            exchange=self.actions_exchange,
                            routing_key=action.type,
                            message=message,
                        )
                    )
        return plans

    async def dispatch(
        self,
        event_name: str,
        rules: list[AutomationRule],
        event_body: dict[str, Any],
        related_doc: dict[str, Any],
    ) -> list[DispatchPlan]:
        """Publish every planned message; returns only once all have been published."""
        plans = self.plan(rules, event_body, related_doc)
        if self.parallel:
            # Every publish settles before the first failure is raised
            results = await asyncio.gather(
                *(self._publish(event_name, plan) for plan in plans), return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
        else:
            for plan in plans:
                await self._publish(event_name, plan)
        return plans

    async def _publish(self, event_name: str, plan: DispatchPlan) -> None:
        action_type = plan.message.action_type
        body = self.serializer.serialize(plan.message.to_wire())
        try:
            await self.backend.publish(plan.exchange, plan.routing_key, body, plan.headers or None)
        except Exception as e:
            raise DispatchError(
                f"Failed to publish action '{action_type}'", event_name=event_name, cause=e
            ) from e

        if self.metrics:
            self.metrics.record_dispatch(action_type, plan.delayed)

        if plan.delayed:
            logger.info(
                "rules_engine.action_scheduled",
                action=action_type,
                event_name=event_name,
                delay_ms=plan.delay_ms,
            )
        else:
            logger.info("rules_engine.action_dispatched", action=action_type, event_name=event_name)
