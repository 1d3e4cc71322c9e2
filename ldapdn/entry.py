"""
A single declared directory entry and its observe/diff/apply cycle.
"""

import logging
from typing import Dict, Any, List, Optional

from ldapdn.attributes import AttributeMap, parse_declarations
from ldapdn.observation import NOT_FOUND, parse_search_output
from ldapdn.reconcile import (
    reconcile, is_converged, PolicySet, WorkPlan,
    ENSURE_PRESENT, ENSURE_ABSENT, PLAN_CREATE,
)
from ldapdn.change_record import to_ldif
from ldapdn.gateway import DirectoryGateway

logger = logging.getLogger(__name__)

RESULT_UNCHANGED = 'unchanged'
RESULT_CREATED = 'created'
RESULT_MODIFIED = 'modified'
RESULT_REMOVED = 'removed'


class ManagedEntry:
    """
    Declared state of one DN.

    Two ManagedEntry objects for the same DN must not be synced concurrently:
    the observe, diff and apply steps are not atomic against the directory.
    """

    def __init__(
        self,
        dn: str,
        attributes: List[str],
        ensure: str = ENSURE_PRESENT,
        unique_attributes: Optional[List[str]] = None,
        indifferent_attributes: Optional[List[str]] = None,
        name: Optional[str] = None
    ):
        self.dn = dn
        self.name = name or dn
        self.ensure = ensure
        self.declared: AttributeMap = parse_declarations(attributes)
        self.policy = PolicySet(unique_attributes, indifferent_attributes)
        self.last_record: Optional[str] = None

        overlapping = self.policy.overlapping()
        if overlapping:
            logger.warning(f"{self.name}: attributes declared both unique and indifferent are "
                           f"treated as indifferent: {overlapping}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ManagedEntry':
        return cls(
            dn=config['dn'],
            attributes=config['attributes'],
            ensure=config.get('ensure', ENSURE_PRESENT),
            unique_attributes=config.get('unique_attributes'),
            indifferent_attributes=config.get('indifferent_attributes'),
            name=config.get('name')
        )

    def plan(self, gateway: DirectoryGateway, search=None) -> WorkPlan:
        """
        Observe the entry and compute the work needed.

        Args:
            gateway: Gateway used to read the entry
            search: Optional replacement for gateway.search, e.g. wrapped in retries

        Raises:
            ParseError: If the search output is malformed
            GatewayError: If the search fails
        """
        search = search or gateway.search
        result = search(self.dn)
        observed = NOT_FOUND if result is NOT_FOUND else parse_search_output(result)
        logger.debug(f"ldapdn >> {self.name}: {self.declared!r}")
        return reconcile(self.declared, observed, self.ensure, self.policy)

    def is_converged(self, plan: WorkPlan) -> bool:
        return is_converged(plan, self.ensure)

    def change_record(self, plan: WorkPlan) -> str:
        return to_ldif(plan, self.dn)

    def result_for(self, plan: WorkPlan) -> str:
        """Outcome name for a plan that is about to be applied."""
        if plan.is_empty():
            return RESULT_UNCHANGED
        if plan.kind == PLAN_CREATE:
            return RESULT_CREATED
        if self.ensure == ENSURE_ABSENT:
            return RESULT_REMOVED
        return RESULT_MODIFIED

    def sync(self, gateway: DirectoryGateway, dry_run: bool = False, search=None) -> str:
        """
        Bring the entry to its declared state.

        The whole plan is computed and serialized before anything is sent,
        and the gateway receives it as one record.

        Args:
            gateway: Gateway to read and write through
            dry_run: Log the change record instead of applying it
            search: Optional replacement for gateway.search

        Returns:
            One of 'unchanged', 'created', 'modified', 'removed'

        Raises:
            ParseError: If the search output is malformed
            GatewayError: If the search or the apply fails
        """
        plan = self.plan(gateway, search=search)
        if self.is_converged(plan):
            logger.info(f"{self.name}: already in desired state")
            return RESULT_UNCHANGED

        record = self.change_record(plan)
        self.last_record = record
        result = self.result_for(plan)
        if dry_run:
            logger.info(f"{self.name}: would apply ({result}):\n{record}")
            return result

        gateway.apply(plan.kind, record)
        logger.info(f"{self.name}: {result} {self.dn}")
        return result
