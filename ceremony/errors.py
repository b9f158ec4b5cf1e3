"""
ceremony.errors — Error Taxonomy
=================================

Only the errors below ever reach an API caller.  Datastore trouble during
member lookup and telemetry write failures are absorbed where they happen
(logged, never raised) so the trigger path always answers fast.
"""

from __future__ import annotations


class CeremonyError(Exception):
    """Base class for errors rendered as JSON by the API layer."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class InvalidRequest(CeremonyError):
    """Malformed or missing input (e.g. a blank card id).  Never retried."""

    status_code = 400
    code = "invalid_request"


class NoVideoResolvable(CeremonyError):
    """No rule matched and no active default video is configured.

    Operator-actionable misconfiguration; clients should not auto-retry.
    """

    status_code = 404
    code = "no_video_resolvable"

    def __init__(self, message: str = "No playable video is configured") -> None:
        super().__init__(message)


class TriggerNotFound(CeremonyError):
    """A completion signal referenced an unknown trigger id."""

    status_code = 404
    code = "trigger_not_found"

    def __init__(self, trigger_id: int) -> None:
        super().__init__(f"Trigger {trigger_id} does not exist")
        self.trigger_id = trigger_id


class MalformedConditions(ValueError):
    """A rule's ``conditions`` payload does not fit its rule type.

    Raised at cache-load time only; the offending rule is skipped.
    """

    def __init__(self, rule_type: str, reason: str) -> None:
        super().__init__(f"Malformed {rule_type} conditions: {reason}")
        self.rule_type = rule_type
        self.reason = reason
