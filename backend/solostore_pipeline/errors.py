from typing import Any, Dict, Optional


class PipelineError(Exception):
    code = "pipeline_error"
    category = "precondition"
    http_status = 409

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context: Dict[str, Any] = context

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message, "category": self.category}
        if self.context:
            payload["context"] = {key: value for key, value in self.context.items() if value is not None}
        return payload


# Validation: rejected synchronously, never enters a state machine.


class ValidationFailure(PipelineError):
    code = "validation_failed"
    category = "validation"
    http_status = 400

    def __init__(self, message: str = "", errors: Optional[list] = None, **context: Any):
        super().__init__(message or "invalid request", **context)
        self.errors = list(errors or [])

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.errors:
            payload["details"] = self.errors
        return payload


class InvalidDomain(ValidationFailure):
    code = "invalid_domain"


# Precondition: refused with no state change, retry after satisfying it.


class DomainNotVerified(PipelineError):
    code = "domain_not_verified"


class BuildInProgress(PipelineError):
    code = "build_in_progress"


class BuildNotCompleted(PipelineError):
    code = "build_not_completed"


class AlreadyVerified(PipelineError):
    code = "already_verified"


class ForceVerifyDisabled(PipelineError):
    code = "force_verify_disabled"
    http_status = 403


class InvalidTransition(PipelineError):
    code = "invalid_transition"

    def __init__(self, current_state: str, action: str, message: str = ""):
        super().__init__(
            message or f"cannot {action} while {current_state}",
            current_state=current_state,
            action=action,
        )
        self.current_state = current_state
        self.action = action


# Retryable runtime: the record is left in a stable failed state.


class VerificationFailed(PipelineError):
    code = "verification_failed"
    category = "retryable"
    http_status = 422


# Fatal/operator: surfaced verbatim, no automatic retry.


class InUse(PipelineError):
    code = "in_use"
    category = "fatal"
