from __future__ import annotations

import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from .errors import (
    ConcurrentModificationError,
    DomainNotFoundError,
    RollbackNotAllowedError,
    RuleNotFoundError,
    RuleValidationError,
    VersionNotFoundError,
)
from .models import (
    Domain,
    PublishedRule,
    PublishEvent,
    PublishKind,
    Rule,
    RuleStatus,
    RuleVersion,
    VersionDraft,
    VersionUpdate,
)

logger = logging.getLogger(__name__)

Listener = Callable[[str], Any]

_NAME_STRIP_RE = re.compile(r"[^a-z0-9\s]")
_NAME_SPACE_RE = re.compile(r"\s+")


def generate_rule_name(title: str) -> str:
    """Derive the stable rule name used by traces and test profiles."""
    name = _NAME_STRIP_RE.sub("", title.lower()).strip()
    return _NAME_SPACE_RE.sub("_", name)[:50]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate(model: type, data: Any):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise RuleValidationError(str(exc)) from exc


class RuleStore:
    """In-memory rule repository with version lifecycle operations.

    Writes to the store are serialized by a single lock; every write validates
    its input completely before touching the aggregate. Listeners registered with
    :meth:`add_listener` are called with the rule's domain id after publish,
    rollback and archive, once the lock has been released.
    """

    def __init__(self, domains: Iterable[Domain] = ()) -> None:
        self._lock = threading.RLock()
        self._domains: dict[str, Domain] = {}
        self._rules: dict[str, Rule] = {}
        self._listeners: list[Listener] = []
        for domain in domains:
            self.register_domain(domain)

    # ── Domains ──────────────────────────────────────────────────────────

    def register_domain(self, domain: Domain | Mapping[str, Any]) -> Domain:
        domain = _validate(Domain, domain)
        with self._lock:
            self._domains[domain.id] = domain
        return domain

    def get_domain(self, domain_id: str) -> Domain:
        domain = self._domains.get(domain_id)
        if domain is None:
            raise DomainNotFoundError(domain_id)
        return domain

    # ── Listeners ────────────────────────────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, domain_id: str) -> None:
        for listener in list(self._listeners):
            listener(domain_id)

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, rule_id: str) -> Rule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def list_rules(self, domain_id: str, *, include_archived: bool = False) -> list[Rule]:
        self.get_domain(domain_id)
        with self._lock:
            rules = [r for r in self._rules.values() if r.domain_id == domain_id]
        if not include_archived:
            rules = [r for r in rules if r.status != RuleStatus.ARCHIVED]
        return sorted(rules, key=lambda r: -r.priority)

    def published_rules(self, domain_id: str) -> tuple[PublishedRule, ...]:
        """Published, active, non-archived rules of a domain in insertion order."""
        self.get_domain(domain_id)
        with self._lock:
            views = []
            for rule in self._rules.values():
                if rule.domain_id != domain_id:
                    continue
                if rule.status != RuleStatus.ACTIVE or not rule.is_active:
                    continue
                version = rule.published
                if version is None:
                    continue
                views.append(
                    PublishedRule(
                        rule_id=rule.id,
                        name=rule.name,
                        domain_id=rule.domain_id,
                        priority=version.priority,
                        version=version,
                        metrics=rule.metrics,
                    )
                )
        return tuple(views)

    # ── Writes ───────────────────────────────────────────────────────────

    def create_rule(
        self,
        domain_id: str,
        draft: VersionDraft | Mapping[str, Any],
        actor: str,
    ) -> Rule:
        draft = _validate(VersionDraft, draft)
        self.get_domain(domain_id)
        now = _now()
        first = RuleVersion(
            version=1,
            created_by=actor,
            created_at=now,
            **draft.model_dump(),
        )
        rule = Rule(
            id=uuid.uuid4().hex,
            domain_id=domain_id,
            name=generate_rule_name(draft.title),
            title=draft.title,
            priority=draft.priority,
            versions=(first,),
            created_by=actor,
            updated_by=actor,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._rules[rule.id] = rule
        logger.info("Created rule %s (%s) in domain %s", rule.name, rule.id, domain_id)
        return rule

    def create_version(
        self,
        rule_id: str,
        data: VersionUpdate | Mapping[str, Any],
        actor: str,
        *,
        expected_version: int | None = None,
    ) -> RuleVersion:
        """Append a version merged over the current one. Never auto-publishes."""
        update = _validate(VersionUpdate, data)
        with self._lock:
            rule = self.get(rule_id)
            self._ensure_editable(rule)
            self._check_expected(rule, expected_version)

            base = rule.latest.model_dump(
                include={"title", "match_mode", "conditions", "actions",
                         "explanation", "priority"}
            )
            base.update(update.model_dump(exclude_none=True))
            merged = _validate(VersionDraft, base)

            now = _now()
            version = RuleVersion(
                version=len(rule.versions) + 1,
                created_by=actor,
                created_at=now,
                **merged.model_dump(),
            )
            rule.versions = rule.versions + (version,)
            rule.current_version = version.version
            # Published rules keep the name and title of the served version
            if rule.published_version is None:
                rule.name = generate_rule_name(version.title)
                rule.title = version.title
                rule.priority = version.priority
            rule.updated_by = actor
            rule.updated_at = now
        logger.info("Rule %s: appended version %d", rule.name, version.version)
        return version

    def publish_version(
        self,
        rule_id: str,
        version: int | None,
        actor: str,
        *,
        expected_version: int | None = None,
    ) -> RuleVersion:
        with self._lock:
            rule = self.get(rule_id)
            self._ensure_editable(rule)
            self._check_expected(rule, expected_version)
            number = rule.current_version if version is None else version
            record = self._publish(rule, number, actor, PublishKind.PUBLISH)
        logger.info("Rule %s: published version %d", rule.name, number)
        self._notify(rule.domain_id)
        return record

    def rollback_to_version(self, rule_id: str, version: int, actor: str) -> RuleVersion:
        with self._lock:
            rule = self.get(rule_id)
            self._ensure_editable(rule)
            if rule.published_version is None or rule.published_version <= 1:
                raise RollbackNotAllowedError(
                    f"Rule {rule_id} has no earlier published version to roll back from"
                )
            if rule.get_version(version) is None:
                raise VersionNotFoundError(rule_id, version)
            if version >= rule.published_version:
                raise RollbackNotAllowedError(
                    f"Rollback target {version} must be earlier than published "
                    f"version {rule.published_version}"
                )
            record = self._publish(rule, version, actor, PublishKind.ROLLBACK)
        logger.info("Rule %s: rolled back to version %d", rule.name, version)
        self._notify(rule.domain_id)
        return record

    def archive_rule(self, rule_id: str, actor: str) -> Rule:
        with self._lock:
            rule = self.get(rule_id)
            rule.status = RuleStatus.ARCHIVED
            rule.is_active = False
            rule.updated_by = actor
            rule.updated_at = _now()
        logger.info("Rule %s archived by %s", rule.name, actor)
        self._notify(rule.domain_id)
        return rule

    # ── Helpers ──────────────────────────────────────────────────────────

    def _publish(self, rule: Rule, number: int, actor: str, kind: PublishKind) -> RuleVersion:
        record = rule.get_version(number)
        if record is None:
            raise VersionNotFoundError(rule.id, number)
        now = _now()
        rule.publish_events = rule.publish_events + (
            PublishEvent(version=number, kind=kind, actor=actor, at=now),
        )
        rule.published_version = number
        rule.name = generate_rule_name(record.title)
        rule.title = record.title
        rule.priority = record.priority
        rule.status = RuleStatus.ACTIVE
        rule.is_active = True
        rule.last_published_at = now
        rule.last_published_by = actor
        rule.updated_by = actor
        rule.updated_at = now
        return record

    @staticmethod
    def _ensure_editable(rule: Rule) -> None:
        if rule.status == RuleStatus.ARCHIVED:
            raise RuleValidationError(f"Rule {rule.id} is archived")

    @staticmethod
    def _check_expected(rule: Rule, expected_version: int | None) -> None:
        if expected_version is not None and expected_version != rule.current_version:
            raise ConcurrentModificationError(rule.id, expected_version, rule.current_version)
