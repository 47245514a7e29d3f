"""Detection engine exceptions."""

from __future__ import annotations


class DetectionError(Exception):
    """Base exception for detection engine errors."""


class TargetNotFoundError(DetectionError):
    """The requested target is unknown to the sample source."""

    def __init__(self, target_id: str) -> None:
        super().__init__(f"Target not found: {target_id}")
        self.target_id = target_id


class RuleNotFoundError(DetectionError):
    """The requested rule id is not in the catalogue."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Detection rule not found: {rule_id}")
        self.rule_id = rule_id


class RulePredicateError(DetectionError):
    """A rule predicate raised while being evaluated (treated as not fired)."""

    def __init__(self, rule_id: str, target_id: str, cause: BaseException) -> None:
        super().__init__(f"Predicate for rule {rule_id} failed on {target_id}: {cause!r}")
        self.rule_id = rule_id
        self.target_id = target_id
        self.cause = cause
