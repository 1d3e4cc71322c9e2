"""
Ordered attribute storage shared by declarations and observed entries.

Attribute order matters on the wire: some directories require the
objectClass values to be sent before the attributes they allow.
"""

import re
import logging
from typing import Dict, Iterable, Iterator, List, Tuple

logger = logging.getLogger(__name__)

SCHEME_PREFIX = re.compile(r'^\{.*?\}')


class DeclarationError(ValueError):
    """Raised when a declared attribute is not of the form name:value."""
    pass


def strip_scheme(value: str) -> str:
    """Remove a leading {SCHEME} tag, e.g. '{SSHA}abc==' -> 'abc=='."""
    return SCHEME_PREFIX.sub('', value, count=1)


class AttributeMap:
    """
    Mapping of attribute name to an ordered list of values.

    Keys iterate in the order they were first set; values keep the order
    they were appended in.
    """

    def __init__(self, pairs: Iterable[Tuple[str, str]] = ()):
        self._values: Dict[str, List[str]] = {}
        for name, value in pairs:
            self.set(name, value)

    def set(self, name: str, value: str) -> None:
        """Append value to the list held for name."""
        self._values.setdefault(name, []).append(value)

    def get(self, name: str) -> List[str]:
        return list(self._values.get(name, []))

    def stripped(self, name: str) -> List[str]:
        """Values of name with any scheme prefix removed."""
        return [strip_scheme(value) for value in self._values.get(name, [])]

    def names(self) -> List[str]:
        return list(self._values)

    def items(self) -> Iterator[Tuple[str, List[str]]]:
        for name, values in self._values.items():
            yield name, list(values)

    def pairs(self) -> Iterator[Tuple[str, str]]:
        """Flatten to (name, value) in map order."""
        for name, values in self._values.items():
            for value in values:
                yield name, value

    def __contains__(self, name) -> bool:
        return name in self._values

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other) -> bool:
        if not isinstance(other, AttributeMap):
            return NotImplemented
        return list(self.items()) == list(other.items())

    def __repr__(self) -> str:
        return f"AttributeMap({dict(self._values)!r})"


def parse_declarations(declarations: Iterable[str]) -> AttributeMap:
    """
    Build an AttributeMap from 'name:value' strings.

    Each string is split on its first colon; name and value are trimmed of
    surrounding whitespace.

    Args:
        declarations: Declared attributes, e.g. ['objectClass: person', 'cn: bob']

    Returns:
        AttributeMap in declaration order

    Raises:
        DeclarationError: If a declaration has no colon or no attribute name
    """
    attributes = AttributeMap()
    for declaration in declarations:
        if not isinstance(declaration, str) or ':' not in declaration:
            raise DeclarationError(f"Attribute declaration must be 'name:value', got: {declaration!r}")
        name, value = declaration.split(':', 1)
        name = name.strip()
        if not name:
            raise DeclarationError(f"Attribute declaration has no name: {declaration!r}")
        attributes.set(name, value.strip())
    logger.debug(f"Parsed {len(attributes)} declared attributes: {attributes.names()}")
    return attributes
