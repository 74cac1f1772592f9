"""
Entity resolution.

Maps an event name to the domain document it refers to and fetches that
document, so action workers receive it without a second database trip.
"""

from dataclasses import dataclass
from typing import Any

import structlog

from ..models import EventEnvelope, ResolvedEntity
from ..store import EntityStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EntityRoute:
    """Which document family an event belongs to."""

    entity_type: str
    reference_field: str
    collection: str
    prefixes: tuple[str, ...] = ()
    exact: tuple[str, ...] = ()

    def matches(self, event_name: str) -> bool:
        return event_name in self.exact or event_name.startswith(self.prefixes)


def default_routes(
    leads: str = "leads",
    appointments: str = "appointments",
    payments: str = "payments",
    coaches: str = "coaches",
) -> tuple[EntityRoute, ...]:
    """Event families in match order; the first matching route wins."""
    return (
        EntityRoute(
            "Lead",
            "leadId",
            leads,
            prefixes=(
                "lead_",
                "funnel_",
                "form_submitted",
                "content_consumed",
                "whatsapp_message_received",
            ),
        ),
        EntityRoute("Appointment", "appointmentId", appointments, prefixes=("appointment_", "task_")),
        EntityRoute(
            "Payment",
            "paymentId",
            payments,
            prefixes=("payment_", "invoice_", "subscription_", "card_"),
        ),
        EntityRoute("Coach", "coachId", coaches, exact=("coach.inactive",)),
    )


class EntityResolver:
    """Hydrates the document referenced by an event."""

    def __init__(self, store: EntityStore, routes: tuple[EntityRoute, ...] | None = None):
        self.store = store
        self.routes = routes if routes is not None else default_routes()

    @classmethod
    def from_settings(cls, store: EntityStore, settings) -> "EntityResolver":
        return cls(
            store,
            default_routes(
                leads=settings.leads_collection,
                appointments=settings.appointments_collection,
                payments=settings.payments_collection,
                coaches=settings.coaches_collection,
            ),
        )

    def route(self, event_name: str) -> EntityRoute | None:
        """Return the route for an event, or None when the family is not handled."""
        for route in self.routes:
            if route.matches(event_name):
                return route
        return None

    async def resolve(
        self, envelope: EventEnvelope, route: EntityRoute | None = None
    ) -> ResolvedEntity | None:
        """Fetch the referenced document; None when unhandled, unreferenced or missing."""
        route = route or self.route(envelope.event_name)
        if route is None:
            return None

        entity_id: Any = envelope.reference(route.reference_field)
        if entity_id is None:
            logger.warning(
                "rules_engine.reference_missing",
                event_name=envelope.event_name,
                field=route.reference_field,
            )
            return None

        document = await self.store.find_by_id(route.collection, entity_id)
        if document is None:
            return None

        return ResolvedEntity(
            entity_type=route.entity_type,
            collection=route.collection,
            entity_id=entity_id,
            document=document,
        )
