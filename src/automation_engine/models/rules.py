"""
Automation Rule Definitions

Coach-configured rules binding a trigger event (plus optional conditions) to
an ordered list of actions. Documents are stored with camelCase keys; the
models expose snake_case attributes and accept either form.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TriggerEvent(str, Enum):
    """Event names a rule can be triggered by."""

    # Lead & customer lifecycle
    LEAD_CREATED = "lead_created"
    LEAD_STATUS_CHANGED = "lead_status_changed"
    LEAD_TEMPERATURE_CHANGED = "lead_temperature_changed"
    LEAD_CONVERTED_TO_CLIENT = "lead_converted_to_client"

    # Funnel & conversion
    FORM_SUBMITTED = "form_submitted"
    FUNNEL_STAGE_ENTERED = "funnel_stage_entered"
    FUNNEL_STAGE_EXITED = "funnel_stage_exited"
    FUNNEL_COMPLETED = "funnel_completed"

    # Appointment & calendar
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_REMINDER_TIME = "appointment_reminder_time"
    APPOINTMENT_FINISHED = "appointment_finished"

    # Communication
    WHATSAPP_MESSAGE_RECEIVED = "whatsapp_message_received"
    CONTENT_CONSUMED = "content_consumed"

    # Task & system
    TASK_CREATED = "task_created"
    TASK_COMPLETED = "task_completed"
    TASK_OVERDUE = "task_overdue"

    # Payment & subscription
    PAYMENT_SUCCESSFUL = "payment_successful"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_LINK_CLICKED = "payment_link_clicked"
    PAYMENT_ABANDONED = "payment_abandoned"
    INVOICE_PAID = "invoice_paid"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    CARD_EXPIRED = "card_expired"

    # Coach lifecycle
    COACH_INACTIVE = "coach.inactive"


class ActionType(str, Enum):
    """Actions a rule can perform; executed by downstream action workers."""

    # Lead data & funnel
    UPDATE_LEAD_SCORE = "update_lead_score"
    ADD_LEAD_TAG = "add_lead_tag"
    REMOVE_LEAD_TAG = "remove_lead_tag"
    ADD_TO_FUNNEL = "add_to_funnel"
    MOVE_TO_FUNNEL_STAGE = "move_to_funnel_stage"
    REMOVE_FROM_FUNNEL = "remove_from_funnel"
    UPDATE_LEAD_FIELD = "update_lead_field"
    CREATE_DEAL = "create_deal"

    # Communication
    SEND_WHATSAPP_MESSAGE = "send_whatsapp_message"
    CREATE_EMAIL_MESSAGE = "create_email_message"
    CREATE_SMS_MESSAGE = "create_sms_message"
    SEND_INTERNAL_NOTIFICATION = "send_internal_notification"
    SEND_PUSH_NOTIFICATION = "send_push_notification"
    SCHEDULE_DRIP_SEQUENCE = "schedule_drip_sequence"

    # Task & workflow
    CREATE_TASK = "create_task"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    ADD_NOTE_TO_LEAD = "add_note_to_lead"
    ADD_FOLLOWUP_DATE = "add_followup_date"

    # Payment
    CREATE_INVOICE = "create_invoice"
    ISSUE_REFUND = "issue_refund"

    # System
    CALL_WEBHOOK = "call_webhook"
    TRIGGER_ANOTHER_AUTOMATION = "trigger_another_automation"
    WAIT_DELAY = "wait_delay"


class ConditionLogic(str, Enum):
    """How a rule combines its trigger conditions."""

    AND = "AND"
    OR = "OR"


class TriggerCondition(BaseModel):
    """A single `{field, operator, value}` check."""

    field: str
    operator: str = "equals"
    value: Any = None


class AutomationAction(BaseModel):
    """An action embedded in a rule."""

    model_config = ConfigDict(use_enum_values=True)

    type: ActionType
    config: dict[str, Any] = Field(default_factory=dict)
    delay: float | None = 0
    order: int | None = None

    @field_validator("config", mode="before")
    @classmethod
    def _default_config(cls, value: Any) -> Any:
        return {} if value is None else value


class AutomationRule(BaseModel):
    """Automation rule as stored in the rules collection."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str | None = Field(default=None, alias="_id")
    name: str
    coach_id: str | None = Field(default=None, alias="coachId")
    trigger_event: TriggerEvent = Field(alias="triggerEvent")
    trigger_conditions: list[TriggerCondition] = Field(
        default_factory=list, alias="triggerConditions"
    )
    trigger_condition_logic: ConditionLogic = Field(
        default=ConditionLogic.AND, alias="triggerConditionLogic"
    )
    actions: list[AutomationAction] = Field(default_factory=list)
    is_active: bool = Field(default=True, alias="isActive")
    created_by: str | None = Field(default=None, alias="createdBy")

    @field_validator("id", "coach_id", "created_by", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        # ObjectId and friends
        return None if value is None else str(value)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "AutomationRule":
        """Build a rule from a stored document."""
        return cls.model_validate(document)
