"""
Rule engine - per-request authorization and field redaction.

A rules document is keyed by collection name (``*`` for defaults), then by
action (``.create``, ``.read``, ``.update``, ``.delete``). Inside a
collection:
- ``*`` holds property rules: ``{field: {action: rule}}``
- any other non-action key is a record id whose rules override the
  collection rules for that one record (actions and property rules)

A rule value is one of:
- a boolean
- a role list drawn from Guest, User, Owner
- a predicate name from the registry, optionally negated and/or written as
  a call: "isOwner", "!isOwner(user, data)"
- a Rule instance (for rules built in code)

Predicates are looked up in a closed registry; rule strings are never
executed as code.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from docstore.errors import AuthorizationError, CredentialError, RuleConfigError
from docstore.logging import get_logger
from docstore.runtime.context import CallContext

logger = get_logger("Rules")


# =============================================================================
# Vocabulary
# =============================================================================


class Role(StrEnum):
    GUEST = "Guest"
    USER = "User"
    OWNER = "Owner"


class RuleAction(StrEnum):
    CREATE = ".create"
    READ = ".read"
    UPDATE = ".update"
    DELETE = ".delete"


METHOD_ACTIONS: dict[str, RuleAction] = {
    "GET": RuleAction.READ,
    "POST": RuleAction.CREATE,
    "PUT": RuleAction.UPDATE,
    "PATCH": RuleAction.UPDATE,
    "DELETE": RuleAction.DELETE,
}

WRITE_ACTIONS = (RuleAction.CREATE, RuleAction.UPDATE)

WILDCARD = "*"


# =============================================================================
# Rule Context
# =============================================================================


@dataclass
class RuleContext:
    """
    Bindings a rule is evaluated against.

    Attributes:
        user: Caller's user record, None when anonymous
        data: Existing record (empty for create)
        new_data: Incoming payload (empty for read/delete)
        is_admin: Admin override flag
        lookup: Read-only record lookup ``(collection, id) -> record``
    """

    user: dict[str, Any] | None
    data: dict[str, Any]
    new_data: dict[str, Any]
    is_admin: bool = False
    lookup: Callable[[str, str], Any] | None = None

    @property
    def user_id(self) -> str | None:
        if self.user is None or self.user.get("_id") is None:
            return None
        return str(self.user["_id"])

    def get(self, collection: str, record_id: str) -> Any:
        if self.lookup is None:
            raise LookupError("No record lookup configured for rules")
        return self.lookup(collection, record_id)


Predicate = Callable[[RuleContext], bool]


def _owns(user_id: str | None, record: Mapping[str, Any]) -> bool:
    owner_id = record.get("_ownerId")
    return user_id is not None and owner_id is not None and str(owner_id) == user_id


# =============================================================================
# Rule Variants
# =============================================================================


class Rule:
    """Base class for compiled rules."""

    def evaluate(self, ctx: RuleContext, strict: bool = True) -> bool:
        """
        Decide the rule for a context.

        Args:
            ctx: Bindings
            strict: When True, a role rule with no caller raises
                AuthorizationError instead of answering False

        Returns:
            True if allowed
        """
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class AlwaysAllow(Rule):
    def evaluate(self, ctx: RuleContext, strict: bool = True) -> bool:
        return True

    def describe(self) -> str:
        return "allow"


@dataclass(frozen=True)
class AlwaysDeny(Rule):
    def evaluate(self, ctx: RuleContext, strict: bool = True) -> bool:
        return False

    def describe(self) -> str:
        return "deny"


@dataclass(frozen=True)
class RoleIn(Rule):
    """
    Role list check.

    - Guest: always allowed
    - no caller (and no admin override): AuthorizationError when strict
    - User: any authenticated caller
    - Owner: caller id equals the record's _ownerId
    """

    roles: tuple[Role, ...]

    def evaluate(self, ctx: RuleContext, strict: bool = True) -> bool:
        if Role.GUEST in self.roles:
            return True
        if ctx.user is None and not ctx.is_admin:
            if strict:
                raise AuthorizationError()
            return False
        if Role.USER in self.roles:
            return True
        if ctx.user is not None and Role.OWNER in self.roles:
            return _owns(ctx.user_id, ctx.data)
        return False

    def describe(self) -> str:
        return "roles(" + ", ".join(role.value for role in self.roles) + ")"


@dataclass(frozen=True)
class OwnerMatch(Rule):
    """Caller owns the existing record."""

    def evaluate(self, ctx: RuleContext, strict: bool = True) -> bool:
        return _owns(ctx.user_id, ctx.data)

    def describe(self) -> str:
        return "isOwner"


@dataclass(frozen=True)
class CustomPredicate(Rule):
    """A registered predicate, optionally negated."""

    name: str
    fn: Predicate = field(compare=False)
    negate: bool = False

    def evaluate(self, ctx: RuleContext, strict: bool = True) -> bool:
        result = bool(self.fn(ctx))
        return not result if self.negate else result

    def describe(self) -> str:
        return ("!" if self.negate else "") + self.name


# =============================================================================
# Predicate Registry
# =============================================================================


def _is_owner(ctx: RuleContext) -> bool:
    return _owns(ctx.user_id, ctx.data)


def _is_new_owner(ctx: RuleContext) -> bool:
    return _owns(ctx.user_id, ctx.new_data)


def _is_authenticated(ctx: RuleContext) -> bool:
    return ctx.user is not None


def _is_guest(ctx: RuleContext) -> bool:
    return ctx.user is None


BUILTIN_PREDICATES: dict[str, Predicate] = {
    "isOwner": _is_owner,
    "isNewOwner": _is_new_owner,
    "isAuthenticated": _is_authenticated,
    "isGuest": _is_guest,
}

_PREDICATE_PATTERN = re.compile(r"^\s*(!)?\s*([A-Za-z_]\w*)\s*(\([\w\s,.]*\))?\s*$")

RULE_BINDINGS = ("user", "data", "newData")

# Argument lists the built-in predicates accept, mapped to the predicate that
# checks them. isOwner against newData is the isNewOwner check.
_BUILTIN_SIGNATURES: dict[str, dict[tuple[str, ...], str]] = {
    "isOwner": {("user", "data"): "isOwner", ("user", "newData"): "isNewOwner"},
    "isNewOwner": {("user", "newData"): "isNewOwner"},
    "isAuthenticated": {("user",): "isAuthenticated"},
    "isGuest": {("user",): "isGuest"},
}


def _parse_arguments(group: str | None) -> tuple[str, ...] | None:
    if group is None:
        return None
    args = tuple(arg.strip() for arg in group[1:-1].split(","))
    if args == ("",):
        return None
    return args


class PredicateRegistry:
    """Closed set of named predicates a rule string may refer to."""

    def __init__(self, predicates: Mapping[str, Predicate] | None = None):
        self._predicates: dict[str, Predicate] = dict(BUILTIN_PREDICATES)
        if predicates:
            self._predicates.update(predicates)

    def register(self, name: str, fn: Predicate) -> None:
        if not re.fullmatch(r"[A-Za-z_]\w*", name):
            raise RuleConfigError(f"Invalid predicate name: {name!r}")
        self._predicates[name] = fn

    def __contains__(self, name: object) -> bool:
        return name in self._predicates

    def compile(self, expression: str) -> Rule:
        """
        Turn a rule string into a Rule.

        Raises:
            RuleConfigError: If the string is not a known predicate reference
        """
        match = _PREDICATE_PATTERN.match(expression)
        if match is None:
            raise RuleConfigError(f"Unsupported rule expression: {expression!r}")
        negate, name = bool(match.group(1)), match.group(2)
        args = _parse_arguments(match.group(3))

        if name in ("true", "false"):
            if args is not None:
                raise RuleConfigError(f"Literal rule takes no arguments: {expression!r}")
            allowed = (name == "true") != negate
            return AlwaysAllow() if allowed else AlwaysDeny()
        if name not in self._predicates:
            raise RuleConfigError(f"Unknown rule predicate: {name!r}")
        if args is not None:
            name = self._bind(name, args, expression)
        if name == "isOwner" and not negate and self._predicates[name] is _is_owner:
            return OwnerMatch()
        return CustomPredicate(name=name, fn=self._predicates[name], negate=negate)

    def _bind(self, name: str, args: tuple[str, ...], expression: str) -> str:
        """
        Check a call's argument list and return the predicate it selects.

        Built-in predicates have fixed signatures; registered predicates
        accept any subset of the rule bindings.
        """
        signatures = _BUILTIN_SIGNATURES.get(name)
        if signatures is not None and self._predicates[name] is BUILTIN_PREDICATES[name]:
            if args not in signatures:
                raise RuleConfigError(f"Unsupported arguments for {name}: {expression!r}")
            return signatures[args]
        unknown = [arg for arg in args if arg not in RULE_BINDINGS]
        if unknown:
            raise RuleConfigError(f"Unknown rule binding {unknown[0]!r} in {expression!r}")
        return name


# =============================================================================
# Compiled Rules
# =============================================================================


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, tuple)) and len(value) == 0)


def compile_rule(value: Any, registry: PredicateRegistry) -> Rule:
    """
    Compile one rule value.

    Raises:
        RuleConfigError: For unknown roles, predicates or value types
    """
    if isinstance(value, Rule):
        return value
    if isinstance(value, bool):
        return AlwaysAllow() if value else AlwaysDeny()
    if isinstance(value, (list, tuple)):
        try:
            roles = tuple(Role(role) for role in value)
        except ValueError as e:
            raise RuleConfigError(f"Unknown role in {list(value)!r}") from e
        return RoleIn(roles=roles)
    if isinstance(value, str):
        return registry.compile(value)
    raise RuleConfigError(f"Unsupported rule value: {value!r}")


def _compile_actions(
    raw: Mapping[str, Any], registry: PredicateRegistry, where: str
) -> dict[RuleAction, Rule]:
    actions: dict[RuleAction, Rule] = {}
    for key, value in raw.items():
        if not key.startswith("."):
            continue
        try:
            action = RuleAction(key)
        except ValueError as e:
            raise RuleConfigError(f"Unknown action {key!r} in {where}") from e
        if not _is_unset(value):
            actions[action] = compile_rule(value, registry)
    return actions


def _compile_properties(
    raw: Mapping[str, Any], registry: PredicateRegistry, where: str
) -> dict[str, dict[RuleAction, Rule]]:
    properties: dict[str, dict[RuleAction, Rule]] = {}
    for prop, prop_rules in raw.items():
        if prop.startswith("."):
            continue
        if not isinstance(prop_rules, Mapping):
            raise RuleConfigError(f"Property rules for {prop!r} in {where} must be a mapping")
        properties[prop] = _compile_actions(prop_rules, registry, f"{where}.{prop}")
    return properties


@dataclass
class RecordRules:
    """Rules scoped to one record id."""

    actions: dict[RuleAction, Rule] = field(default_factory=dict)
    properties: dict[str, dict[RuleAction, Rule]] = field(default_factory=dict)


@dataclass
class CollectionRules:
    """Rules for one collection."""

    actions: dict[RuleAction, Rule] = field(default_factory=dict)
    properties: dict[str, dict[RuleAction, Rule]] = field(default_factory=dict)
    records: dict[str, RecordRules] = field(default_factory=dict)


def _property_rules_for(
    properties: Mapping[str, Mapping[RuleAction, Rule]], action: RuleAction
) -> dict[str, Rule]:
    return {prop: rules[action] for prop, rules in properties.items() if action in rules}


@dataclass
class ResolvedRule:
    """Outcome of rule resolution: the top-level rule plus field rules."""

    rule: Rule
    properties: dict[str, Rule] = field(default_factory=dict)


@dataclass
class ReadRedaction:
    """Fields to hide per gated record, in record order."""

    hidden: list[list[str]] = field(default_factory=list)

    def apply(self, result: Any) -> Any:
        """Drop the hidden fields from a shaped record or record list in place."""
        if isinstance(result, dict):
            records = [result]
        elif isinstance(result, list):
            records = result
        else:
            return result
        for record, fields in zip(records, self.hidden):
            if isinstance(record, dict):
                for name in fields:
                    record.pop(name, None)
        return result


DEFAULT_RULES: dict[RuleAction, Rule] = {
    RuleAction.CREATE: RoleIn(roles=(Role.USER,)),
    RuleAction.UPDATE: RoleIn(roles=(Role.USER,)),
    RuleAction.DELETE: RoleIn(roles=(Role.USER,)),
}


# =============================================================================
# Rule Engine
# =============================================================================


class RuleEngine:
    """
    Resolves and enforces rules for CRUD calls.

    Example:
        engine = RuleEngine({"users": {".read": ["Owner"], "*": {"email": {".read": False}}}})
        engine.authorize(ctx, RuleAction.READ, "users", data=record)
    """

    def __init__(
        self,
        rules: Mapping[str, Any] | None = None,
        predicates: Mapping[str, Predicate] | None = None,
        lookup: Callable[[str, str], Any] | None = None,
    ):
        """
        Compile a rules document.

        Args:
            rules: Rules document
            predicates: Extra named predicates for rule strings
            lookup: Record lookup exposed to predicates as ``ctx.get``

        Raises:
            RuleConfigError: If the document is malformed
        """
        self.registry = PredicateRegistry(predicates)
        self.lookup = lookup
        self._defaults: dict[RuleAction, Rule] = dict(DEFAULT_RULES)
        self._collections: dict[str, CollectionRules] = {}
        self.load(rules or {})

    def register_predicate(self, name: str, fn: Predicate) -> None:
        """Add a predicate usable from rule strings loaded after this call."""
        self.registry.register(name, fn)

    def load(self, rules: Mapping[str, Any]) -> None:
        """Compile and install a rules document, replacing collection rules."""
        if not isinstance(rules, Mapping):
            raise RuleConfigError("Rules document must be a mapping")

        defaults = dict(DEFAULT_RULES)
        collections: dict[str, CollectionRules] = {}

        for name, raw in rules.items():
            if not isinstance(raw, Mapping):
                raise RuleConfigError(f"Rules for {name!r} must be a mapping")
            if name == WILDCARD:
                defaults.update(_compile_actions(raw, self.registry, name))
                continue

            compiled = CollectionRules(actions=_compile_actions(raw, self.registry, name))
            for key, value in raw.items():
                if key.startswith("."):
                    continue
                if not isinstance(value, Mapping):
                    raise RuleConfigError(f"Rules for {name}.{key} must be a mapping")
                where = f"{name}.{key}"
                if key == WILDCARD:
                    compiled.properties = _compile_properties(value, self.registry, where)
                else:
                    compiled.records[key] = RecordRules(
                        actions=_compile_actions(value, self.registry, where),
                        properties=_compile_properties(value, self.registry, where),
                    )
            collections[name] = compiled

        self._defaults = defaults
        self._collections = collections
        logger.debug("Loaded rules for %d collection(s)", len(collections))

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(
        self,
        action: RuleAction,
        collection: str | None,
        record: Mapping[str, Any] | None = None,
    ) -> ResolvedRule:
        """
        Resolve the effective rule for an action on a collection/record.

        Precedence, lowest first: global default, collection rule, record-id
        rule. Property rules come from the collection wildcard set; record-id
        property rules override same-named wildcard ones.
        """
        rule = self._defaults.get(action, AlwaysAllow())
        properties: dict[str, Rule] = {}

        collection_rules = self._collections.get(collection) if collection else None
        if collection_rules is not None:
            rule = collection_rules.actions.get(action, rule)
            properties.update(_property_rules_for(collection_rules.properties, action))

            record_id = record.get("_id") if record else None
            record_rules = (
                collection_rules.records.get(str(record_id)) if record_id is not None else None
            )
            if record_rules is not None:
                rule = record_rules.actions.get(action, rule)
                properties.update(_property_rules_for(record_rules.properties, action))

        return ResolvedRule(rule=rule, properties=properties)

    # =========================================================================
    # Enforcement
    # =========================================================================

    def authorize(
        self,
        ctx: CallContext,
        action: RuleAction,
        collection: str | None,
        data: dict[str, Any] | None = None,
        new_data: dict[str, Any] | None = None,
    ) -> None:
        """
        Gate one operation and redact disallowed fields in place.

        On reads the fields are removed from ``data``; on writes from
        ``new_data``, so a write silently drops fields it may not set.

        Raises:
            AuthorizationError: Role rule needs a caller and there is none
            CredentialError: Rule denies the caller (without admin override)
        """
        hidden = self._gate(ctx, action, collection, data, new_data)
        target = new_data if action in WRITE_ACTIONS else data
        if action != RuleAction.DELETE and target is not None:
            for prop in hidden:
                target.pop(prop, None)

    def _gate(
        self,
        ctx: CallContext,
        action: RuleAction,
        collection: str | None,
        data: Mapping[str, Any] | None = None,
        new_data: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Check the top-level rule and return the fields property rules deny."""
        resolved = self.resolve(action, collection, data)
        rule_ctx = RuleContext(
            user=ctx.user,
            data=dict(data) if data is not None else {},
            new_data=dict(new_data) if new_data is not None else {},
            is_admin=ctx.is_admin,
            lookup=self.lookup,
        )

        if not resolved.rule.evaluate(rule_ctx, strict=True) and not ctx.is_admin:
            logger.debug(
                "Denied %s on %s for %s (%s)",
                action.value,
                collection,
                ctx.user_id or "anonymous",
                resolved.rule.describe(),
            )
            raise CredentialError()

        return [
            prop
            for prop, prop_rule in resolved.properties.items()
            if not prop_rule.evaluate(rule_ctx, strict=False)
        ]

    def authorize_read(
        self,
        ctx: CallContext,
        collection: str | None,
        records: Any,
    ) -> ReadRedaction:
        """
        Gate a read against the stored records, before select or load.

        Record-id rules and owner checks see the full record, so a
        projection that drops ``_id`` or ``_ownerId`` cannot change the
        decision. Record lists are gated once per record (an empty list
        passes); anything else (collection name lists) once at collection
        level.

        Returns:
            The fields to hide, to be applied to the shaped response
        """
        if isinstance(records, dict):
            return ReadRedaction([self._gate(ctx, RuleAction.READ, collection, records)])
        if isinstance(records, list) and all(isinstance(r, dict) for r in records):
            return ReadRedaction(
                [self._gate(ctx, RuleAction.READ, collection, record) for record in records]
            )
        self._gate(ctx, RuleAction.READ, collection)
        return ReadRedaction([])

    def authorize_result(
        self,
        ctx: CallContext,
        collection: str | None,
        result: Any,
    ) -> None:
        """Gate an unshaped read result and redact it in place."""
        self.authorize_read(ctx, collection, result).apply(result)

    # =========================================================================
    # Introspection
    # =========================================================================

    def iter_rules(self) -> Iterator[tuple[str, str, RuleAction, Rule]]:
        """Yield (collection, scope, action, rule) for every compiled rule."""
        for action, rule in self._defaults.items():
            yield WILDCARD, "", action, rule
        for name, collection_rules in self._collections.items():
            for action, rule in collection_rules.actions.items():
                yield name, "", action, rule
            for prop, prop_rules in collection_rules.properties.items():
                for action, rule in prop_rules.items():
                    yield name, f"*.{prop}", action, rule
            for record_id, record_rules in collection_rules.records.items():
                for action, rule in record_rules.actions.items():
                    yield name, record_id, action, rule
                for prop, prop_rules in record_rules.properties.items():
                    for action, rule in prop_rules.items():
                        yield name, f"{record_id}.{prop}", action, rule
