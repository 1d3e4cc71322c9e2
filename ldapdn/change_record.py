"""
LDIF change records for work plans.

serialize() renders a WorkPlan as the lines of an LDIF record: a plain entry
for create plans, a ``changetype: modify`` record for modify plans.
read_change_record() reverses that so gateways speaking the protocol
directly can apply the same record the command line tools would receive.
"""

import base64
import logging
from typing import Dict, List, Tuple

from ldapdn.attributes import AttributeMap
from ldapdn.observation import ParseError, unfold_lines, decode_value, ATTRIBUTE_LINE
from ldapdn.reconcile import WorkPlan, Add, Delete, Replace, PLAN_CREATE

logger = logging.getLogger(__name__)

CHANGETYPE_MODIFY = 'modify'
CHANGETYPE_ADD = 'add'

MODE_ADD = 'add'
MODE_REPLACE = 'replace'
MODE_DELETE = 'delete'

SEPARATOR = '-'


def _is_safe(value: str) -> bool:
    """RFC 2849 SAFE-STRING check."""
    if value[:1] in (' ', ':', '<') or value.endswith(' '):
        return False
    for char in value:
        if ord(char) > 127 or char in ('\0', '\n', '\r'):
            return False
    return True


def attribute_line(name: str, value: str) -> str:
    """Format one 'name: value' line, base64 encoding values LDIF cannot carry verbatim."""
    if _is_safe(value):
        return f"{name}: {value}"
    encoded = base64.b64encode(value.encode('utf-8')).decode('ascii')
    return f"{name}:: {encoded}"


def _serialize_modifications(name: str, operations, lines: List[str]) -> None:
    mode = MODE_ADD
    open_group = None

    def close():
        nonlocal open_group, mode
        if open_group is not None:
            lines.append(SEPARATOR)
            if open_group == MODE_REPLACE:
                mode = MODE_ADD
            open_group = None

    for operation in operations:
        if isinstance(operation, Add):
            if open_group is None:
                lines.append(f"{mode}: {name}")
                open_group = mode
            lines.append(attribute_line(name, operation.value))
        elif isinstance(operation, Delete):
            if open_group == MODE_DELETE:
                continue
            close()
            lines.append(f"{MODE_DELETE}: {name}")
            open_group = MODE_DELETE
        elif isinstance(operation, Replace):
            close()
            mode = MODE_REPLACE
        else:
            raise TypeError(f"Unknown operation for {name}: {operation!r}")
    close()


def serialize(plan: WorkPlan, dn: str) -> List[str]:
    """
    Render a work plan as LDIF lines.

    Args:
        plan: Plan produced by reconcile()
        dn: Distinguished name the plan applies to

    Returns:
        Record lines, attributes in plan order
    """
    lines = [attribute_line('dn', dn)]

    if plan.kind == PLAN_CREATE:
        for name, operations in plan.items():
            for operation in operations:
                if not isinstance(operation, Add):
                    raise TypeError(f"Create plans only hold Add operations, got {operation!r} for {name}")
                lines.append(attribute_line(name, operation.value))
        return lines

    lines.append(f"changetype: {CHANGETYPE_MODIFY}")
    for name, operations in plan.items():
        _serialize_modifications(name, operations, lines)
    return lines


def to_ldif(plan: WorkPlan, dn: str) -> str:
    """Render a work plan as record text ready for ldapadd/ldapmodify."""
    return '\n'.join(serialize(plan, dn)) + '\n'


class ChangeRecord:
    """
    A parsed change record.

    For an add record, ``attributes`` holds the new entry's values. For a
    modify record, ``changes`` maps each attribute to its ordered
    (operation, values) steps, operation being 'add', 'delete' or 'replace'.
    """

    def __init__(self, dn: str, changetype: str):
        self.dn = dn
        self.changetype = changetype
        self.attributes = AttributeMap()
        self.changes: Dict[str, List[Tuple[str, List[str]]]] = {}

    def add_change(self, name: str, operation: str) -> List[str]:
        values: List[str] = []
        self.changes.setdefault(name, []).append((operation, values))
        return values

    def __repr__(self):
        if self.changetype == CHANGETYPE_ADD:
            return f"ChangeRecord({self.dn!r}, add, {self.attributes!r})"
        return f"ChangeRecord({self.dn!r}, modify, {self.changes!r})"


def _split(line: str) -> Tuple[str, str]:
    match = ATTRIBUTE_LINE.match(line)
    if not match:
        raise ParseError(f"Not an LDIF line: {line!r}")
    name = match.group('name').strip()
    value = match.group('value')
    if match.group('sep') == '::':
        value = decode_value(name, value)
    return name, value


def read_change_record(text: str) -> ChangeRecord:
    """
    Parse a record produced by serialize()/to_ldif().

    Raises:
        ParseError: If the record is malformed
    """
    lines = [line for line in unfold_lines(text) if line.strip() and not line.startswith('#')]
    if not lines:
        raise ParseError("Empty change record")

    name, dn = _split(lines[0])
    if name.lower() != 'dn':
        raise ParseError(f"Change record must start with dn, got {lines[0]!r}")

    body = lines[1:]
    changetype = CHANGETYPE_ADD
    if body and _split(body[0])[0].lower() == 'changetype':
        changetype = _split(body[0])[1].strip().lower()
        body = body[1:]

    record = ChangeRecord(dn, changetype)

    if changetype == CHANGETYPE_ADD:
        for line in body:
            record.attributes.set(*_split(line))
        return record

    if changetype != CHANGETYPE_MODIFY:
        raise ParseError(f"Unsupported changetype: {changetype}")

    current = None
    for line in body:
        if line == SEPARATOR:
            if current is None:
                raise ParseError("Separator without a modification header")
            current = None
            continue
        key, value = _split(line)
        if current is None:
            if key not in (MODE_ADD, MODE_DELETE, MODE_REPLACE):
                raise ParseError(f"Expected add/delete/replace header, got {line!r}")
            current = (value.strip(), record.add_change(value.strip(), key))
            continue
        attribute, values = current
        if key != attribute:
            raise ParseError(f"Value for {key} inside modification of {attribute}")
        values.append(value)

    if current is not None:
        raise ParseError(f"Modification of {current[0]} is not terminated by '-'")
    return record
