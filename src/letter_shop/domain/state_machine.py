"""Escrow State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter which transfer event arrives or how often it is replayed, an escrow
leaves PENDING at most once; terminal states are final.

Transition table:
    PENDING  -> FULFILLED  (payment_released)
    PENDING  -> REJECTED   (offer_withdrawn)
    PENDING  -> EXPIRED    (offer_expired)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="PENDING")
        sm.payment_released()  # transitions to FULFILLED
        sm.status              # "FULFILLED"
    """

    # --- States ---
    PENDING = State("PENDING", initial=True)
    FULFILLED = State("FULFILLED", final=True)
    REJECTED = State("REJECTED", final=True)
    EXPIRED = State("EXPIRED", final=True)

    # --- Events / Transitions ---
    payment_released = PENDING.to(FULFILLED)
    offer_withdrawn = PENDING.to(REJECTED)
    offer_expired = PENDING.to(EXPIRED)

    def __init__(self, current_status: str = "PENDING") -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
