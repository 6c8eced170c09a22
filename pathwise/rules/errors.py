from __future__ import annotations


class PathwiseError(Exception):
    """Base class for client-facing errors raised by the rule core."""


class RuleValidationError(PathwiseError):
    pass


class DomainNotFoundError(PathwiseError):
    def __init__(self, domain_id: str):
        super().__init__(f"Domain not found: {domain_id}")
        self.domain_id = domain_id


class RuleNotFoundError(PathwiseError):
    def __init__(self, rule_id: str):
        super().__init__(f"Rule not found: {rule_id}")
        self.rule_id = rule_id


class VersionNotFoundError(PathwiseError):
    def __init__(self, rule_id: str, version: int):
        super().__init__(f"Version {version} not found for rule {rule_id}")
        self.rule_id = rule_id
        self.version = version


class RollbackNotAllowedError(PathwiseError):
    pass


class ConcurrentModificationError(PathwiseError):
    def __init__(self, rule_id: str, expected: int, actual: int):
        super().__init__(
            f"Rule {rule_id} is at version {actual}, expected {expected}; reload and retry"
        )
        self.rule_id = rule_id
        self.expected = expected
        self.actual = actual


class ProfileNotFoundError(PathwiseError):
    def __init__(self, profile_id: str):
        super().__init__(f"Test profile not found: {profile_id}")
        self.profile_id = profile_id
