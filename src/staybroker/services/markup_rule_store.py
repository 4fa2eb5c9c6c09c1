"""Persistence and lifecycle of pricing markup rules.

Rules are never hard-deleted: retiring one moves it to RuleState.RETIRED.
The single default rule is tracked by a pointer item in the
``pricing-markup-default`` table. Every change of default moves the pointer
under an optimistic version check in the same transaction that flips the
``is_default`` flags, so no interleaving of writers can leave two defaults.
"""

import datetime as dt
import threading
import uuid
import weakref
from typing import Any, Callable

from boto3.dynamodb.conditions import Attr
from pydantic import ValidationError as PydanticValidationError

from ..models.enums import RuleProvider, RuleState
from ..models.errors import (
    ConflictError,
    DuplicateDefaultError,
    ErrorCode,
    RuleNotFoundError,
    ValidationError,
    parse_input,
)
from ..models.markup import PricingMarkupRule, RuleCreate, RuleUpdate
from ..utils.logging import get_logger
from .dynamodb import DynamoDBService, get_dynamodb_service, to_item

logger = get_logger(__name__)

RULES_TABLE = "pricing-markups"
DEFAULT_TABLE = "pricing-markup-default"
DEFAULT_SCOPE = "default"

_STATE_NAMES = {"#state": "state"}

# Process-wide: a mutation through any store reaches every subscribed cache.
# Bound methods are held weakly.
_listeners: list[Callable[[], Callable[[], None] | None]] = []
_listeners_lock = threading.Lock()


def subscribe_to_rule_changes(listener: Callable[[], None]) -> None:
    """Call listener after every rule mutation made through any store."""
    ref: Callable[[], Callable[[], None] | None]
    if hasattr(listener, "__self__"):
        ref = weakref.WeakMethod(listener)  # type: ignore[arg-type]
    else:
        def ref() -> Callable[[], None]:
            return listener

    with _listeners_lock:
        _listeners.append(ref)


def notify_rule_change() -> None:
    with _listeners_lock:
        _listeners[:] = [ref for ref in _listeners if ref() is not None]
        live = [ref() for ref in _listeners]
    for listener in live:
        if listener is not None:
            listener()


def reset_rule_change_listeners() -> None:
    """Forget every listener (tests)."""
    with _listeners_lock:
        _listeners.clear()


def sort_rules(rules: list[PricingMarkupRule]) -> list[PricingMarkupRule]:
    """Priority descending, most recently created first on ties."""
    return sorted(rules, key=lambda r: (r.priority, r.created_at), reverse=True)


class MarkupRuleStore:
    """CRUD and default management for markup rules.

    Listeners registered with subscribe() are called after every mutation
    made through any store in the process, including one whose conditional
    write lost, so readers reload.
    """

    def __init__(
        self,
        db: DynamoDBService | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    def subscribe(self, listener: Callable[[], None]) -> None:
        subscribe_to_rule_changes(listener)

    def _changed(self) -> None:
        notify_rule_change()

    # Reads

    def _load(self, rule_id: str) -> PricingMarkupRule | None:
        item = self.db.get_item(RULES_TABLE, {"rule_id": rule_id})
        return PricingMarkupRule.model_validate(item) if item else None

    def get_rule(self, rule_id: str, include_retired: bool = False) -> PricingMarkupRule:
        """Get a rule by ID.

        Raises:
            RuleNotFoundError: Unknown ID, or retired and include_retired is False
        """
        rule = self._load(rule_id)
        if rule is None or (rule.state == RuleState.RETIRED and not include_retired):
            raise RuleNotFoundError(details={"rule_id": rule_id})
        return rule

    def list_rules(
        self,
        state: RuleState | None = None,
        provider: RuleProvider | None = None,
        include_retired: bool = False,
    ) -> list[PricingMarkupRule]:
        """List rules ordered by priority then recency.

        Args:
            state: Only rules in this state
            provider: Only rules scoped to this provider
            include_retired: Include retired rules when no state is given
        """
        condition = None
        if state is not None:
            condition = Attr("state").eq(state.value)
        elif not include_retired:
            condition = Attr("state").ne(RuleState.RETIRED.value)
        if provider is not None:
            provider_cond = Attr("provider").eq(provider.value)
            condition = provider_cond if condition is None else condition & provider_cond

        items = self.db.scan(RULES_TABLE, filter_expression=condition)
        return sort_rules([PricingMarkupRule.model_validate(i) for i in items])

    def list_active_rules(self) -> list[PricingMarkupRule]:
        """Active rules in evaluation order. Loader for ActiveRuleCache."""
        return self.list_rules(state=RuleState.ACTIVE)

    def get_default(self) -> PricingMarkupRule | None:
        pointer = self.db.get_item(DEFAULT_TABLE, {"scope": DEFAULT_SCOPE})
        if not pointer or not pointer.get("rule_id"):
            return None
        return self._load(pointer["rule_id"])

    # Mutations

    def create_rule(
        self, data: RuleCreate | dict[str, Any], actor: str | None = None
    ) -> PricingMarkupRule:
        """Create a rule, active unless ``activate`` is False.

        Raises:
            ValidationError: Invalid rule definition
        """
        payload = parse_input(RuleCreate, data)
        now = self._clock()
        rule = PricingMarkupRule(
            **payload.model_dump(exclude={"activate"}),
            rule_id=str(uuid.uuid4()),
            state=RuleState.ACTIVE if payload.activate else RuleState.DRAFT,
            created_by=actor,
            updated_by=actor,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.put_item(
                RULES_TABLE,
                to_item(rule),
                condition_expression="attribute_not_exists(rule_id)",
            )
        finally:
            self._changed()

        logger.info("Created markup rule %s (%s)", rule.rule_id, rule.name)
        return rule

    def update_rule(
        self, rule_id: str, data: RuleUpdate | dict[str, Any], actor: str | None = None
    ) -> PricingMarkupRule:
        """Apply the explicitly set fields and revalidate the merged rule.

        Raises:
            RuleNotFoundError: Unknown or retired rule
            ValidationError: The merged rule is invalid
            ConflictError: The rule changed since it was read
        """
        changes = parse_input(RuleUpdate, data)
        current = self.get_rule(rule_id)

        merged = current.model_dump()
        merged.update(changes.model_dump(exclude_unset=True))
        merged["updated_by"] = actor
        merged["updated_at"] = self._clock()
        try:
            rule = PricingMarkupRule.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

        try:
            written = self.db.put_item(
                RULES_TABLE,
                to_item(rule),
                condition_expression="updated_at = :prev AND #state <> :retired",
                expression_attribute_names=_STATE_NAMES,
                expression_attribute_values={
                    ":prev": current.updated_at.isoformat(),
                    ":retired": RuleState.RETIRED.value,
                },
            )
        finally:
            self._changed()

        if not written:
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"rule_id": rule_id})
        logger.info("Updated markup rule %s", rule_id)
        return rule

    def toggle_status(self, rule_id: str, actor: str | None = None) -> PricingMarkupRule:
        """Flip a rule between draft and active."""
        current = self.get_rule(rule_id)
        new_state = RuleState.DRAFT if current.is_active else RuleState.ACTIVE

        try:
            attrs = self.db.update_item(
                RULES_TABLE,
                key={"rule_id": rule_id},
                update_expression="SET #state = :new, updated_by = :actor, updated_at = :now",
                expression_attribute_names=_STATE_NAMES,
                expression_attribute_values={
                    ":new": new_state.value,
                    ":old": current.state.value,
                    ":actor": actor,
                    ":now": self._clock().isoformat(),
                },
                condition_expression="#state = :old",
            )
        finally:
            self._changed()

        if attrs is None:
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"rule_id": rule_id})
        logger.info("Markup rule %s is now %s", rule_id, new_state.value)
        return PricingMarkupRule.model_validate(attrs)

    def _read_pointer(self) -> tuple[str | None, int]:
        pointer = self.db.get_item(DEFAULT_TABLE, {"scope": DEFAULT_SCOPE})
        if not pointer:
            return None, 0
        return pointer.get("rule_id"), int(pointer.get("version", 0))

    def _pointer_op(self, rule_id: str | None, version: int) -> dict[str, Any]:
        item: dict[str, Any] = {"scope": DEFAULT_SCOPE, "version": version + 1}
        if rule_id:
            item["rule_id"] = rule_id
        return self.db.put_op(
            DEFAULT_TABLE,
            item,
            condition_expression="attribute_not_exists(#scope) OR version = :v",
            expression_attribute_names={"#scope": "scope"},
            expression_attribute_values={":v": version},
        )

    def set_default(self, rule_id: str, actor: str | None = None) -> PricingMarkupRule:
        """Make a rule the single default, clearing the previous one atomically.

        Raises:
            RuleNotFoundError: Unknown or retired rule
            DuplicateDefaultError: Another writer changed the default first
        """
        rule = self.get_rule(rule_id)
        old_id, version = self._read_pointer()
        if old_id == rule_id and rule.is_default:
            return rule

        now = self._clock().isoformat()
        ops = [self._pointer_op(rule_id, version)]
        if old_id and old_id != rule_id:
            ops.append(
                self.db.update_op(
                    RULES_TABLE,
                    key={"rule_id": old_id},
                    update_expression="SET is_default = :false, updated_at = :now",
                    expression_attribute_values={":false": False, ":now": now},
                    condition_expression="attribute_exists(rule_id)",
                )
            )
        set_expr = "SET is_default = :true, updated_at = :now"
        values: dict[str, Any] = {
            ":true": True,
            ":now": now,
            ":retired": RuleState.RETIRED.value,
        }
        if actor:
            set_expr += ", updated_by = :actor"
            values[":actor"] = actor
        ops.append(
            self.db.update_op(
                RULES_TABLE,
                key={"rule_id": rule_id},
                update_expression=set_expr,
                expression_attribute_values=values,
                expression_attribute_names=_STATE_NAMES,
                condition_expression="attribute_exists(rule_id) AND #state <> :retired",
            )
        )

        try:
            committed = self.db.transact_write(ops)
        finally:
            self._changed()

        if not committed:
            logger.warning("Default markup swap to %s lost a race", rule_id)
            raise DuplicateDefaultError(details={"rule_id": rule_id})

        logger.info("Default markup rule changed from %s to %s", old_id, rule_id)
        return self.get_rule(rule_id)

    def retire_rule(self, rule_id: str, actor: str | None = None) -> PricingMarkupRule:
        """Soft-delete a rule. Retiring the default also clears the default.

        Raises:
            RuleNotFoundError: Unknown or already retired rule
            ConflictError: The default changed while retiring
        """
        self.get_rule(rule_id)
        old_id, version = self._read_pointer()
        now = self._clock().isoformat()

        set_expr = "SET #state = :retired, is_default = :false, updated_at = :now"
        values: dict[str, Any] = {
            ":retired": RuleState.RETIRED.value,
            ":false": False,
            ":now": now,
        }
        if actor:
            set_expr += ", updated_by = :actor"
            values[":actor"] = actor
        retire = self.db.update_op(
            RULES_TABLE,
            key={"rule_id": rule_id},
            update_expression=set_expr,
            expression_attribute_values=values,
            expression_attribute_names=_STATE_NAMES,
            condition_expression="attribute_exists(rule_id) AND #state <> :retired",
        )
        # Version bump on every retire orders it against set_default
        pointer = self._pointer_op(None if old_id == rule_id else old_id, version)

        try:
            committed = self.db.transact_write([pointer, retire])
        finally:
            self._changed()

        if not committed:
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"rule_id": rule_id})

        logger.info("Retired markup rule %s", rule_id)
        return self.get_rule(rule_id, include_retired=True)
