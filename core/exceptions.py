"""
Custom exception hierarchy for the Interceptor response core.

Provides specific, meaningful exceptions for every failure mode
so callers can handle errors precisely.
"""

from __future__ import annotations


class InterceptorBaseError(Exception):
    """Root exception for the Interceptor system."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class RuleConfigFault(InterceptorBaseError):
    """Raised while evaluating a rule whose conditions or actions are malformed.

    The rule engine catches it, skips the rule for the current event and
    records the fault. It never escapes ``RuleEngine.ingest``.
    """

    def __init__(self, rule_id: str, message: str, details: dict | None = None) -> None:
        self.rule_id = rule_id
        super().__init__(f"[rule {rule_id}] {message}", details)


class NotBlockedError(InterceptorBaseError):
    """Raised when unblocking an address that has no active block."""

    def __init__(self, ip: str) -> None:
        self.ip = ip
        super().__init__(f"Address '{ip}' is not blocked", {"ip": ip})


class DuplicateRuleIDError(InterceptorBaseError):
    """Raised when creating a rule whose id is already registered."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule '{rule_id}' already exists", {"rule_id": rule_id})


class UnknownRuleIDError(InterceptorBaseError):
    """Raised when a management operation names a rule that does not exist."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule '{rule_id}' not found", {"rule_id": rule_id})


class ValidationError(InterceptorBaseError):
    """Raised when input validation fails."""


class SecurityError(InterceptorBaseError):
    """Raised on authentication / authorization failures."""


class PersistenceError(InterceptorBaseError):
    """Raised when the state store cannot be written."""


class RateLimitExceededError(InterceptorBaseError):
    """Raised when rate limit is exceeded."""

    def __init__(self) -> None:
        super().__init__("Rate limit exceeded. Please try again later.")
