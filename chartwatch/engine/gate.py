"""Notification gate: decides whether a fresh signal is worth a notification.

``decide`` is pure. The caller records ``signal.action`` as the schedule's new
``last_signal`` whatever the decision, so dedupe tracks the latest evaluated
signal rather than the latest dispatched one.
"""

from dataclasses import dataclass
from enum import Enum


class DecisionReason(str, Enum):
    SEND = "send"
    CHANNEL_DISABLED = "channel_disabled"
    HOLD_SUPPRESSED = "hold_suppressed"
    BELOW_THRESHOLD = "below_threshold"
    UNCHANGED_SIGNAL = "unchanged_signal"
    NO_TARGET = "no_target"  # set by the runner when the user has no chat configured


@dataclass(frozen=True)
class NotificationDecision:
    send: bool
    reason: DecisionReason


def decide(signal, schedule) -> NotificationDecision:
    """Apply the filter rules in order.

    ``signal`` needs ``action`` and ``confidence``; ``schedule`` needs the filter
    fields (a Schedule row or a job's FilterSettings both work).
    """
    if not schedule.send_to_telegram:
        return NotificationDecision(False, DecisionReason.CHANNEL_DISABLED)
    if signal.action == "HOLD" and not schedule.send_on_hold:
        return NotificationDecision(False, DecisionReason.HOLD_SUPPRESSED)
    if signal.confidence < schedule.min_confidence:
        return NotificationDecision(False, DecisionReason.BELOW_THRESHOLD)
    if schedule.only_on_signal_change and signal.action == schedule.last_signal:
        return NotificationDecision(False, DecisionReason.UNCHANGED_SIGNAL)
    return NotificationDecision(True, DecisionReason.SEND)
