#!/usr/bin/env python3
"""
Unit tests for the ordered attribute map and declaration parsing.
"""

import os
import sys
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldapdn.attributes import AttributeMap, DeclarationError, parse_declarations, strip_scheme


class TestStripScheme(unittest.TestCase):
    """Test cases for scheme prefix removal."""

    def test_removes_leading_scheme(self):
        self.assertEqual(strip_scheme('{SSHA}abcdef=='), 'abcdef==')
        self.assertEqual(strip_scheme('{CRYPT}$6$salt$hash'), '$6$salt$hash')

    def test_plain_value_unchanged(self):
        self.assertEqual(strip_scheme('plain'), 'plain')
        self.assertEqual(strip_scheme(''), '')

    def test_only_first_tag_removed(self):
        self.assertEqual(strip_scheme('{0}{1}value'), '{1}value')

    def test_brace_not_at_start_is_kept(self):
        self.assertEqual(strip_scheme('a{SSHA}b'), 'a{SSHA}b')

    def test_olc_index_prefix(self):
        """cn=config values such as olcDatabase carry {n} ordering prefixes."""
        self.assertEqual(strip_scheme('{1}mdb'), 'mdb')


class TestAttributeMap(unittest.TestCase):
    """Test cases for AttributeMap."""

    def test_set_appends_and_keeps_key_order(self):
        attributes = AttributeMap()
        attributes.set('objectClass', 'top')
        attributes.set('cn', 'bob')
        attributes.set('objectClass', 'person')

        self.assertEqual(attributes.names(), ['objectClass', 'cn'])
        self.assertEqual(attributes.get('objectClass'), ['top', 'person'])
        self.assertEqual(list(attributes.pairs()), [
            ('objectClass', 'top'), ('objectClass', 'person'), ('cn', 'bob')
        ])

    def test_get_missing_returns_empty_list(self):
        self.assertEqual(AttributeMap().get('mail'), [])

    def test_get_returns_copy(self):
        attributes = AttributeMap([('cn', 'bob')])
        attributes.get('cn').append('alice')
        self.assertEqual(attributes.get('cn'), ['bob'])

    def test_stripped_values(self):
        attributes = AttributeMap([('userPassword', '{SSHA}xyz'), ('userPassword', 'plain')])
        self.assertEqual(attributes.stripped('userPassword'), ['xyz', 'plain'])
        self.assertEqual(attributes.get('userPassword'), ['{SSHA}xyz', 'plain'])

    def test_container_protocol(self):
        attributes = AttributeMap([('cn', 'a'), ('sn', 'b')])
        self.assertIn('cn', attributes)
        self.assertNotIn('mail', attributes)
        self.assertEqual(len(attributes), 2)
        self.assertEqual(list(attributes), ['cn', 'sn'])

    def test_equality_is_order_sensitive(self):
        first = AttributeMap([('cn', 'a'), ('sn', 'b')])
        second = AttributeMap([('sn', 'b'), ('cn', 'a')])
        self.assertEqual(first, AttributeMap([('cn', 'a'), ('sn', 'b')]))
        self.assertNotEqual(first, second)


class TestParseDeclarations(unittest.TestCase):
    """Test cases for name:value declaration parsing."""

    def test_splits_on_first_colon_and_trims(self):
        attributes = parse_declarations([
            'objectClass: top',
            'objectClass:   olcDatabaseConfig  ',
            'olcSuffix: dc=example,dc=com',
            'labeledURI: http://example.com:8080/ home',
        ])
        self.assertEqual(attributes.names(), ['objectClass', 'olcSuffix', 'labeledURI'])
        self.assertEqual(attributes.get('objectClass'), ['top', 'olcDatabaseConfig'])
        self.assertEqual(attributes.get('labeledURI'), ['http://example.com:8080/ home'])

    def test_declaration_order_preserved(self):
        attributes = parse_declarations(['mail: a@x.com', 'objectClass: inetOrgPerson', 'cn: a'])
        self.assertEqual(attributes.names(), ['mail', 'objectClass', 'cn'])

    def test_empty_value_allowed(self):
        attributes = parse_declarations(['description:'])
        self.assertEqual(attributes.get('description'), [''])

    def test_missing_colon_rejected(self):
        with self.assertRaises(DeclarationError):
            parse_declarations(['cn bob'])

    def test_missing_name_rejected(self):
        with self.assertRaises(DeclarationError):
            parse_declarations([': bob'])

    def test_declaration_error_is_value_error(self):
        self.assertTrue(issubclass(DeclarationError, ValueError))


if __name__ == '__main__':
    unittest.main()
