"""
Unit tests for event consumption.

Covers the per-message lifecycle: ack on success, ack-and-drop for unhandled
families and missing documents, nack on malformed bodies and publish
failures, and dead-lettering once the redelivery bound is reached.
"""

import json

import pytest
from helpers import decode, make_message, make_rule

from automation_engine.engine import ProcessingOutcome
from automation_engine.messaging import DELAY_HEADER


def lead_created(lead_id: str = "L1") -> dict:
    return {"eventName": "lead_created", "payload": {"leadId": lead_id, "coachId": "coach-1"}}


@pytest.mark.unit
@pytest.mark.asyncio
class TestEventLifecycle:
    """Test suite for EventConsumer.handle_message."""

    async def test_example_scenario(self, worker, backend, rule_store, entity_store, settings):
        """One immediate and one delayed action for a new lead."""
        entity_store.add("leads", {"_id": "L1", "leadId": "L1", "name": "Asha"})
        rule_store.add(
            make_rule(
                "welcome",
                "lead_created",
                [
                    {"type": "add_lead_tag", "config": {"tag": "new"}},
                    {"type": "send_whatsapp_message", "config": {"delayMinutes": 60, "message": "hi"}},
                ],
            )
        )

        message = make_message(backend, "lead_created", lead_created())
        outcome = await worker.consumer.handle_message(message)

        assert outcome == ProcessingOutcome.ACKED
        assert message.state == "acked"

        immediate = backend.published_to(settings.actions_exchange)
        assert [p.routing_key for p in immediate] == ["add_lead_tag"]

        delayed = backend.published_to(settings.delayed_exchange)
        assert len(delayed) == 1
        assert delayed[0].routing_key == settings.scheduled_actions_queue
        assert delayed[0].headers[DELAY_HEADER] == 3_600_000

        body = decode(delayed[0])
        assert body["actionType"] == "send_whatsapp_message"
        assert body["config"] == {"delayMinutes": 60, "message": "hi"}
        assert body["payload"]["relatedDoc"]["leadId"] == "L1"
        assert body["payload"]["payload"] == {"leadId": "L1", "coachId": "coach-1"}
        assert body["payload"]["eventName"] == "lead_created"
        assert "timestamp" in body["payload"]

    async def test_unknown_event_is_acked_without_work(self, worker, backend, rule_store, entity_store):
        """Events outside every entity family are dropped."""
        rule_store.add(make_rule("odd", "lead_created", [{"type": "create_task"}]))

        message = make_message(backend, "newsletter_opened", {"payload": {"leadId": "L1"}})
        outcome = await worker.consumer.handle_message(message)

        assert outcome == ProcessingOutcome.ACKED
        assert message.state == "acked"
        assert entity_store.lookups == []
        assert rule_store.queries == []
        assert backend.published == []

    async def test_missing_entity_is_acked_and_dropped(self, worker, backend, rule_store, entity_store):
        """A reference to a deleted document is not retried."""
        rule_store.add(make_rule("welcome", "lead_created", [{"type": "add_lead_tag"}]))

        message = make_message(backend, "lead_created", lead_created("gone"))
        outcome = await worker.consumer.handle_message(message)

        assert outcome == ProcessingOutcome.ACKED
        assert entity_store.lookups == [("leads", "gone")]
        assert rule_store.queries == []
        assert backend.published == []
        assert backend.messages_in("engine-under-test") == []

    async def test_missing_reference_field_is_acked(self, worker, backend, entity_store):
        message = make_message(backend, "payment_successful", {"payload": {"amount": 10}})

        outcome = await worker.consumer.handle_message(message)

        assert outcome == ProcessingOutcome.ACKED
        assert entity_store.lookups == []

    async def test_unknown_action_does_not_drop_its_rule(self, worker, backend, rule_store, entity_store, settings):
        """Only the unknown action is skipped; the rule's other actions still go out."""
        entity_store.add("leads", {"_id": "L1"})
        rule_store.add(
            make_rule("welcome", "lead_created", [{"type": "add_lead_tag"}, {"type": "send_email"}])
        )

        message = make_message(backend, "lead_created", lead_created())
        outcome = await worker.consumer.handle_message(message)

        assert outcome == ProcessingOutcome.ACKED
        assert [p.routing_key for p in backend.published_to(settings.actions_exchange)] == [
            "add_lead_tag"
        ]

    async def test_event_without_rules_is_acked(self, worker, backend, entity_store):
        entity_store.add("appointments", {"_id": "A1"})
        message = make_message(
            backend, "appointment_booked", {"payload": {"appointmentId": "A1"}}
        )

        assert await worker.consumer.handle_message(message) == ProcessingOutcome.ACKED
        assert backend.published == []

    async def test_malformed_body_is_nacked(self, worker, backend):
        """Non-JSON content is requeued and does not escape the handler."""
        message = make_message(backend, "lead_created", b"{not json")

        outcome = await worker.consumer.handle_message(message)

        assert outcome == ProcessingOutcome.NACKED
        assert message.state == "requeued"
        assert len(backend.messages_in("engine-under-test")) == 1

    async def test_non_object_body_is_nacked(self, worker, backend):
        message = make_message(backend, "lead_created", [1, 2, 3])

        assert await worker.consumer.handle_message(message) == ProcessingOutcome.NACKED

    async def test_publish_failure_nacks_event(self, worker, backend, rule_store, entity_store):
        entity_store.add("leads", {"_id": "L1"})
        rule_store.add(make_rule("welcome", "lead_created", [{"type": "add_lead_tag"}]))
        backend.fail_publish = ConnectionError("channel closed")

        message = make_message(backend, "lead_created", lead_created())
        outcome = await worker.consumer.handle_message(message)

        assert outcome == ProcessingOutcome.NACKED
        assert message.state == "requeued"

    async def test_store_failure_nacks_event(self, worker, backend, entity_store):
        async def broken(collection, entity_id):
            raise RuntimeError("database unavailable")

        entity_store.find_by_id = broken
        message = make_message(backend, "lead_created", lead_created())

        assert await worker.consumer.handle_message(message) == ProcessingOutcome.NACKED

    async def test_nested_payload_without_top_level_payload_key(self, worker, backend, entity_store, rule_store):
        """Reference fields may sit at the top level of the body."""
        entity_store.add("coaches", {"_id": "C1", "name": "Coach"})
        rule_store.add(
            make_rule("winback", "coach.inactive", [{"type": "send_internal_notification"}])
        )

        message = make_message(backend, "coach.inactive", {"coachId": "C1"})

        assert await worker.consumer.handle_message(message) == ProcessingOutcome.ACKED
        assert [p.routing_key for p in backend.published] == ["send_internal_notification"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestRedeliveryBound:
    """Test suite for bounded redelivery and dead-lettering."""

    async def test_dead_letters_after_max_redeliveries(self, worker, backend, settings):
        outcomes = []
        for _ in range(settings.max_redeliveries):
            message = make_message(backend, "lead_created", b"garbage", message_id="poison")
            outcomes.append(await worker.consumer.handle_message(message))

        assert outcomes[:-1] == [ProcessingOutcome.NACKED] * (settings.max_redeliveries - 1)
        assert outcomes[-1] == ProcessingOutcome.DEAD_LETTERED
        assert message.state == "rejected"

    async def test_dead_lettered_event_lands_in_dead_letter_queue(self, worker, backend, settings):
        """End to end through the bus: poison events end up in the dead-letter queue."""
        await backend.publish(settings.events_exchange, "lead_created", b"garbage")
        await backend.join()

        states = [state for _, state in backend.settlements]
        assert states == ["requeued"] * (settings.max_redeliveries - 1) + ["rejected"]

        dead = backend.messages_in(settings.dead_letter_queue)
        assert len(dead) == 1
        assert dead[0].routing_key == "lead_created"
        assert dead[0].body == b"garbage"

    async def test_success_clears_failure_count(self, worker, backend, entity_store):
        tracker = worker.consumer.tracker
        failing = make_message(backend, "lead_created", b"garbage", message_id="m1")
        await worker.consumer.handle_message(failing)

        entity_store.add("leads", {"_id": "L1"})
        ok = make_message(backend, "lead_created", lead_created(), message_id="m1")
        await worker.consumer.handle_message(ok)

        assert tracker.record_failure(ok) == 1

    async def test_zero_bound_requeues_forever(self, backend, rule_store, entity_store, settings):
        from automation_engine.worker import RulesEngineWorker

        unbounded = settings.model_copy(update={"max_redeliveries": 0})
        engine = RulesEngineWorker(unbounded, backend, rule_store, entity_store)

        for _ in range(20):
            message = make_message(backend, "lead_created", b"garbage", message_id="poison")
            assert await engine.consumer.handle_message(message) == ProcessingOutcome.NACKED


@pytest.mark.unit
@pytest.mark.asyncio
class TestBusDelivery:
    """Events published on the events exchange reach the engine."""

    async def test_published_event_is_processed_and_acked(self, worker, backend, rule_store, entity_store, settings):
        entity_store.add("payments", {"_id": "P1", "amount": 4900})
        rule_store.add(
            make_rule("receipt", "payment_successful", [{"type": "create_invoice", "config": {}}])
        )

        body = json.dumps({"eventName": "payment_successful", "payload": {"paymentId": "P1"}})
        await backend.publish(settings.events_exchange, "payment_successful", body.encode())
        await backend.join()

        assert [state for _, state in backend.settlements] == ["acked"]
        dispatched = backend.published_to(settings.actions_exchange)
        assert [p.routing_key for p in dispatched] == ["create_invoice"]
        assert decode(dispatched[0])["payload"]["relatedDoc"] == {"_id": "P1", "amount": 4900}

    async def test_bad_message_does_not_stop_the_consumer(self, worker, backend, rule_store, entity_store, settings):
        """A malformed event is isolated; the next valid one is still handled."""
        entity_store.add("leads", {"_id": "L2"})
        rule_store.add(make_rule("welcome", "lead_created", [{"type": "add_lead_tag"}]))

        await backend.publish(settings.events_exchange, "lead_created", b"\xff\xfe")
        await backend.publish(
            settings.events_exchange, "lead_created", json.dumps(lead_created("L2")).encode()
        )
        await backend.join()

        states = [state for _, state in backend.settlements]
        assert "acked" in states
        assert [p.routing_key for p in backend.published_to(settings.actions_exchange)] == [
            "add_lead_tag"
        ]

    async def test_metrics_count_outcomes(self, worker, backend, metrics, settings):
        await backend.publish(settings.events_exchange, "unknown_thing", b"{}")
        await backend.join()

        value = metrics.registry.get_sample_value(
            "automation_events_processed_total",
            {"outcome": "acked", "service": settings.service_name},
        )
        assert value == 1.0
