"""
Priority classification for new queue entries.
"""

from typing import Optional, Tuple

from ..models.queue import QueuePriority, TriageContext, Urgency


class PriorityReason:
    """Fixed reasons recorded alongside a priority."""
    EMERGENCY = "Emergency case"
    STAT_DIAGNOSTIC = "STAT diagnostic order"
    DOCTOR_URGENT_REFERRAL = "Doctor urgent referral"
    SENIOR_CITIZEN = "Senior citizen (60+ years)"
    PREGNANT_WOMAN = "Pregnant woman"
    DISABLED_PERSON = "Person with disability"
    INFANT_CHILD = "Infant/Young child (0-5 years)"
    VIP_PATIENT = "VIP patient"
    STAFF_FAMILY = "Hospital staff/family"


SENIOR_AGE = 60
INFANT_AGE = 5


def classify(context: TriageContext) -> Tuple[QueuePriority, Optional[str]]:
    """
    Map triage attributes to ``(priority, reason)``.

    Rules are checked in a fixed order and the first match wins; they are
    never combined.
    """
    if context.is_emergency:
        return QueuePriority.EMERGENCY, PriorityReason.EMERGENCY

    if context.urgency == Urgency.STAT:
        return QueuePriority.URGENT, PriorityReason.STAT_DIAGNOSTIC

    if context.urgency == Urgency.URGENT:
        return QueuePriority.URGENT, PriorityReason.DOCTOR_URGENT_REFERRAL

    if context.age is not None and context.age >= SENIOR_AGE:
        return QueuePriority.PRIORITY, PriorityReason.SENIOR_CITIZEN

    if context.is_pregnant:
        return QueuePriority.PRIORITY, PriorityReason.PREGNANT_WOMAN

    if context.is_disabled:
        return QueuePriority.PRIORITY, PriorityReason.DISABLED_PERSON

    if context.age is not None and context.age <= INFANT_AGE:
        return QueuePriority.PRIORITY, PriorityReason.INFANT_CHILD

    if context.is_vip:
        return QueuePriority.PRIORITY, PriorityReason.VIP_PATIENT

    if context.is_staff:
        return QueuePriority.PRIORITY, PriorityReason.STAFF_FAMILY

    return QueuePriority.NORMAL, None
