"""
Rule matching.

Loads the active rules for an event. Trigger conditions are only applied
when condition evaluation is switched on; otherwise every active rule for
the event fires.
"""

from typing import Any

import structlog
from pydantic import ValidationError

from ..models import AutomationAction, AutomationRule
from ..store import RuleStore
from .conditions import build_context, evaluate_conditions

logger = structlog.get_logger(__name__)


class RuleMatcher:
    """Retrieves the rules to run for an event."""

    def __init__(self, store: RuleStore, evaluate_conditions: bool = False):
        self.store = store
        self.evaluate_conditions = evaluate_conditions

    async def load_rules(self, event_name: str) -> list[AutomationRule]:
        """Active rules triggered by `event_name`, in store order.

        Invalid rule documents are skipped; so are invalid actions, without
        taking the rest of their rule down with them.
        """
        rules = []
        for document in await self.store.find_active(event_name):
            document = dict(document)
            raw_actions = document.pop("actions", None) or []
            try:
                rule = AutomationRule.from_document(document)
            except ValidationError as e:
                logger.warning(
                    "rules_engine.rule_invalid",
                    event_name=event_name,
                    rule=document.get("name") or str(document.get("_id")),
                    errors=e.errors(include_url=False),
                )
                continue
            # The query already filters; stores that don't are not trusted
            if rule.is_active and rule.trigger_event == event_name:
                rule.actions = self._load_actions(event_name, rule, raw_actions)
                rules.append(rule)
        return rules

    def _load_actions(
        self, event_name: str, rule: AutomationRule, raw_actions: Any
    ) -> list[AutomationAction]:
        if not isinstance(raw_actions, list):
            logger.warning("rules_engine.actions_invalid", event_name=event_name, rule=rule.name)
            return []

        actions = []
        for position, raw in enumerate(raw_actions):
            try:
                actions.append(AutomationAction.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "rules_engine.action_invalid",
                    event_name=event_name,
                    rule=rule.name,
                    position=position,
                    errors=e.errors(include_url=False),
                )
        return actions

    async def match(
        self,
        event_name: str,
        event_body: dict[str, Any],
        related_doc: dict[str, Any] | None,
    ) -> list[AutomationRule]:
        rules = await self.load_rules(event_name)
        if not self.evaluate_conditions:
            return rules

        context = build_context(event_body, related_doc)
        matched = []
        for rule in rules:
            if evaluate_conditions(rule.trigger_conditions, rule.trigger_condition_logic, context):
                matched.append(rule)
            else:
                logger.debug("rules_engine.conditions_not_met", event_name=event_name, rule=rule.name)
        return matched
