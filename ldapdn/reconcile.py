"""
Reconciliation of declared attributes against an observed directory entry.

The engine is pure: given the declared attributes, what the directory holds
(or NOT_FOUND) and the attribute policy, it returns a WorkPlan describing the
changes needed. Applying the plan is left to the caller.
"""

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from ldapdn.attributes import AttributeMap, strip_scheme
from ldapdn.observation import ObservedEntry, NOT_FOUND

logger = logging.getLogger(__name__)

ENSURE_PRESENT = 'present'
ENSURE_ABSENT = 'absent'
ENSURE_VALUES = (ENSURE_PRESENT, ENSURE_ABSENT)

PLAN_CREATE = 'create'
PLAN_MODIFY = 'modify'


class Operation:
    """A single change to one attribute."""

    kind = None

    def __eq__(self, other):
        return type(self) is type(other) and self.__dict__ == other.__dict__

    def __hash__(self):
        return hash((self.kind, tuple(sorted(self.__dict__.items()))))

    def __repr__(self):
        return f"{type(self).__name__}()"


class Add(Operation):
    """Add one value to the attribute."""

    kind = 'add'

    def __init__(self, value: str):
        self.value = value

    def __repr__(self):
        return f"Add({self.value!r})"


class Delete(Operation):
    """Remove every value of the attribute."""

    kind = 'delete'


class Replace(Operation):
    """Marker: the Adds that follow overwrite the attribute instead of extending it."""

    kind = 'replace'


class PolicySet:
    """
    Attribute policies for one entry.

    unique: the attribute must hold exactly the declared values; a differing
        live value causes the declared values to replace it.
    indifferent: the attribute's live value is never compared; being present
        at all is enough.
    """

    def __init__(self, unique: Optional[Iterable[str]] = None, indifferent: Optional[Iterable[str]] = None):
        self.unique = frozenset(unique or ())
        self.indifferent = frozenset(indifferent or ())
        self._unique = {name.lower() for name in self.unique}
        self._indifferent = {name.lower() for name in self.indifferent}

    def is_unique(self, name: str) -> bool:
        return name.lower() in self._unique

    def is_indifferent(self, name: str) -> bool:
        return name.lower() in self._indifferent

    def replaces(self, name: str) -> bool:
        """True if a differing live value of name must be replaced."""
        return self.is_unique(name) and not self.is_indifferent(name)

    def overlapping(self) -> List[str]:
        """Attributes declared both unique and indifferent."""
        return sorted(name for name in self.unique if self.is_indifferent(name))

    def __repr__(self):
        return f"PolicySet(unique={sorted(self.unique)}, indifferent={sorted(self.indifferent)})"


class WorkPlan:
    """
    Ordered operations per attribute, plus whether the entry is created or modified.

    Attribute order follows the declaration order.
    """

    def __init__(self, kind: str = PLAN_MODIFY, operations: Optional[Dict[str, List[Operation]]] = None):
        if kind not in (PLAN_CREATE, PLAN_MODIFY):
            raise ValueError(f"Unknown plan kind: {kind}")
        self.kind = kind
        self.operations: Dict[str, List[Operation]] = {}
        for name, ops in (operations or {}).items():
            self.operations[name] = list(ops)

    def append(self, name: str, operation: Operation) -> None:
        self.operations.setdefault(name, []).append(operation)

    def operations_for(self, name: str) -> List[Operation]:
        return list(self.operations.get(name, []))

    def attributes(self) -> List[str]:
        return list(self.operations)

    def items(self) -> Iterator[Tuple[str, List[Operation]]]:
        for name, ops in self.operations.items():
            yield name, list(ops)

    def prune(self) -> 'WorkPlan':
        """Drop attributes that ended up without operations."""
        self.operations = {name: ops for name, ops in self.operations.items() if ops}
        return self

    def is_empty(self) -> bool:
        return not any(self.operations.values())

    def __len__(self):
        return sum(len(ops) for ops in self.operations.values())

    def __eq__(self, other):
        if not isinstance(other, WorkPlan):
            return NotImplemented
        return self.kind == other.kind and list(self.items()) == list(other.items())

    def __repr__(self):
        return f"WorkPlan({self.kind!r}, {self.operations!r})"


def _matches(observed_value: str, declared_values: List[str]) -> bool:
    stripped = strip_scheme(observed_value)
    for declared_value in declared_values:
        if declared_value == observed_value or strip_scheme(declared_value) == stripped:
            return True
    return False


def _create_plan(declared: AttributeMap) -> WorkPlan:
    plan = WorkPlan(PLAN_CREATE)
    for name, value in declared.pairs():
        plan.append(name, Add(value))
    return plan


def reconcile(
    declared: AttributeMap,
    observed: Union[ObservedEntry, type(NOT_FOUND)],
    ensure: str = ENSURE_PRESENT,
    policy: Optional[PolicySet] = None
) -> WorkPlan:
    """
    Compute the changes that bring an entry to its declared state.

    Args:
        declared: Declared attributes in the order they must be sent
        observed: The entry as found in the directory, or NOT_FOUND
        ensure: 'present' to converge the entry, 'absent' to remove the
            declared attributes from it
        policy: Unique and indifferent attribute names

    Returns:
        A create plan when a missing entry must be made, otherwise a modify
        plan; an empty modify plan means nothing needs to change
    """
    if ensure not in ENSURE_VALUES:
        raise ValueError(f"ensure must be one of {ENSURE_VALUES}, got {ensure!r}")
    policy = policy or PolicySet()

    if observed is NOT_FOUND:
        if ensure == ENSURE_ABSENT:
            logger.debug("Entry not found and not wanted: nothing to do")
            return WorkPlan(PLAN_MODIFY)
        plan = _create_plan(declared)
        logger.debug(f"Entry not found: {plan}")
        return plan

    plan = WorkPlan(PLAN_MODIFY)
    found: Dict[str, List[str]] = {}
    # attribute names are case-insensitive; plans use the declared spelling
    spelling: Dict[str, str] = {}
    for name in declared:
        plan.operations[name] = []
        found[name] = []
        spelling.setdefault(name.lower(), name)

    for observed_name, observed_values in observed.attributes.items():
        name = spelling.get(observed_name.lower())
        if name is None:
            continue
        declared_values = declared.get(name)
        for observed_value in observed_values:
            ops = plan.operations[name]
            if _matches(observed_value, declared_values):
                logger.debug(f"asserted and found: {name}: {observed_value}")
                found[name].append(strip_scheme(observed_value))
                if ensure == ENSURE_ABSENT and Delete() not in ops:
                    ops.append(Delete())
            else:
                logger.debug(f"not asserted: {name}: {observed_value}")
                if ensure == ENSURE_PRESENT and policy.replaces(name) and Replace() not in ops:
                    ops.append(Replace())

    if ensure == ENSURE_PRESENT:
        for name, declared_values in declared.items():
            ops = plan.operations[name]
            if observed.saw(name) and policy.is_indifferent(name):
                continue
            # a replace rewrites the whole attribute, so it carries every declared value
            replacing = Replace() in ops
            for value in declared_values:
                if replacing or strip_scheme(value) not in found[name]:
                    ops.append(Add(value))

    plan.prune()
    if plan.is_empty():
        logger.debug("conclusion: nothing to do")
    else:
        logger.debug(f"conclusion: work to do: {plan}")
    return plan


def present_satisfied(plan: WorkPlan) -> bool:
    """True when an entry that should exist needs no additions or replacements."""
    return plan.is_empty()


def absent_satisfied(plan: WorkPlan) -> bool:
    """True when none of the declared values are left to delete."""
    return plan.is_empty()


def is_converged(plan: WorkPlan, ensure: str) -> bool:
    """Check a plan against the predicate matching ensure."""
    if ensure == ENSURE_PRESENT:
        return present_satisfied(plan)
    if ensure == ENSURE_ABSENT:
        return absent_satisfied(plan)
    raise ValueError(f"ensure must be one of {ENSURE_VALUES}, got {ensure!r}")
