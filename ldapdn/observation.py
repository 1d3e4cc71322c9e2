"""
Parsing of directory search output for a single entry.

The gateways hand back LDIF text as produced by ``ldapsearch -LLL`` or
ldap3's ``response_to_ldif``. This module turns it into an ObservedEntry the
reconciliation engine can compare against the declared attributes.
"""

import re
import base64
import binascii
import logging
from typing import List, Optional

from ldapdn.attributes import AttributeMap

logger = logging.getLogger(__name__)

ATTRIBUTE_LINE = re.compile(r'^(?P<name>[^:]*)(?P<sep>::|:<|:) *(?P<value>.*)$')
ATTRIBUTE_NAME = re.compile(r'^[A-Za-z0-9][A-Za-z0-9.;-]*$')


class ParseError(Exception):
    """Raised when search output cannot be parsed as a single LDIF entry."""
    pass


class _NotFound:
    """Search result for a DN that does not exist in the directory."""

    def __repr__(self):
        return 'NOT_FOUND'

    def __bool__(self):
        return False


NOT_FOUND = _NotFound()


class ObservedEntry:
    """
    Attributes of an entry as currently stored in the directory.

    Keeps every attribute name seen, declared or not, so the engine can tell
    an attribute that is missing from one that merely holds other values.
    """

    def __init__(self, dn: str, attributes: Optional[AttributeMap] = None):
        self.dn = dn
        self.attributes = attributes if attributes is not None else AttributeMap()

    def add(self, name: str, value: str) -> None:
        self.attributes.set(name, value)

    def values(self, name: str) -> List[str]:
        return self.attributes.get(name)

    def stripped_values(self, name: str) -> List[str]:
        return self.attributes.stripped(name)

    @property
    def seen_keys(self) -> List[str]:
        return self.attributes.names()

    def saw(self, name: str) -> bool:
        """Attribute names compare case-insensitively, as in LDAP."""
        wanted = name.lower()
        return any(key.lower() == wanted for key in self.attributes)

    def __repr__(self):
        return f"ObservedEntry(dn={self.dn!r}, attributes={self.attributes!r})"


def unfold_lines(text: str) -> List[str]:
    """Join continuation lines onto the line they continue."""
    lines = []
    for raw in re.split(r'\r?\n', text):
        if raw[:1] in (' ', '\t'):
            if not lines:
                raise ParseError(f"Continuation line with nothing to continue: {raw!r}")
            lines[-1] += raw[1:]
        else:
            lines.append(raw)
    return lines


def decode_value(name: str, encoded: str) -> str:
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseError(f"Invalid base64 value for {name}: {e}")
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError:
        # binary values (photos, certificates) are compared in encoded form
        return encoded.strip()


def parse_search_output(text: str) -> ObservedEntry:
    """
    Parse search output describing exactly one entry.

    Args:
        text: LDIF text of one entry, possibly with folded lines

    Returns:
        ObservedEntry with values in the order the directory returned them

    Raises:
        ParseError: If the text is not a well formed single entry
    """
    entry = None
    for number, line in enumerate(unfold_lines(text), start=1):
        if not line.strip() or line.startswith('#'):
            continue

        match = ATTRIBUTE_LINE.match(line)
        if not match:
            raise ParseError(f"Line {number} has no attribute separator: {line!r}")

        name = match.group('name').strip()
        separator = match.group('sep')
        value = match.group('value')
        if separator == '::':
            value = decode_value(name, value)

        if entry is None and name.lower() == 'version':
            continue

        if name.lower() == 'dn':
            if entry is not None:
                raise ParseError(f"Line {number}: search output holds more than one entry")
            entry = ObservedEntry(value)
            continue

        if not ATTRIBUTE_NAME.match(name):
            raise ParseError(f"Line {number} has an invalid attribute name: {name!r}")
        if entry is None:
            raise ParseError(f"Line {number}: attribute {name} appears before the dn line")

        entry.add(name, value)

    if entry is None:
        raise ParseError("Search output contains no dn line")

    logger.debug(f"Observed {entry.dn}: {entry.seen_keys}")
    return entry
