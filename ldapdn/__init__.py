"""
ldapdn - Declarative management of individual LDAP directory entries.

This package compares the attributes declared for a DN with the entry that
currently lives in the directory, computes the changes needed to converge the
two, and applies them as a single LDIF change record.
"""

__version__ = "1.0.0"
__author__ = "ldapdn Team"
