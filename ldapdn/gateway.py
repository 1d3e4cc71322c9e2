"""
Directory gateways: the only part of ldapdn that talks to a directory server.

A gateway can search for one entry by DN and apply change records produced
by ldapdn.change_record. Two implementations are provided:

- Ldap3Gateway speaks LDAP through the ldap3 library.
- CommandGateway drives the OpenLDAP command line tools (ldapsearch,
  ldapadd, ldapmodify), authenticating with SASL EXTERNAL over ldapi:///
  unless told otherwise.
"""

import ssl
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Union

from ldap3 import (
    Server, Connection, Tls, BASE, ALL_ATTRIBUTES,
    SIMPLE, SASL, ANONYMOUS, EXTERNAL,
    MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE,
)
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPBindError
from ldap3.core.results import RESULT_NO_SUCH_OBJECT

from ldapdn.change_record import read_change_record, CHANGETYPE_ADD, CHANGETYPE_MODIFY
from ldapdn.observation import NOT_FOUND
from ldapdn.reconcile import PLAN_CREATE, PLAN_MODIFY
from ldapdn.retry import retry_call, retry_settings, MaxRetriesExceeded

logger = logging.getLogger(__name__)

DEFAULT_AUTH_OPTS = ['-QY', 'EXTERNAL']
DEFAULT_URI = 'ldapi:///'

MODIFY_OPERATIONS = {
    'add': MODIFY_ADD,
    'delete': MODIFY_DELETE,
    'replace': MODIFY_REPLACE,
}


class GatewayError(Exception):
    """
    Raised when a search or an apply fails.

    Carries the change record that was being applied, if any, so the failure
    can be diagnosed without re-running the reconciliation.
    """

    def __init__(self, message: str, record: Optional[str] = None, transient: bool = False):
        self.record = record
        self.transient = transient
        if record:
            message = f"{message}\n\nAttempted change record:\n{record}"
        super().__init__(message)


class GatewayConnectionError(GatewayError):
    """Raised when the gateway cannot reach or bind to the directory."""
    pass


class DirectoryGateway(ABC):
    """Search, create and modify capability for single directory entries."""

    def connect(self) -> None:
        """Open whatever the gateway needs; a no-op by default."""

    def disconnect(self) -> None:
        """Release resources opened by connect()."""

    @abstractmethod
    def search(self, dn: str) -> Union[str, type(NOT_FOUND)]:
        """
        Read one entry.

        Returns:
            LDIF text of the entry at dn, or NOT_FOUND

        Raises:
            GatewayError: On transport or permission failures
        """

    @abstractmethod
    def create(self, record: str) -> None:
        """Apply a record describing a new entry."""

    @abstractmethod
    def modify(self, record: str) -> None:
        """Apply a changetype: modify record."""

    def apply(self, plan_kind: str, record: str) -> None:
        """Route a record to create() or modify() according to the plan kind."""
        if plan_kind == PLAN_CREATE:
            self.create(record)
        elif plan_kind == PLAN_MODIFY:
            self.modify(record)
        else:
            raise ValueError(f"Unknown plan kind: {plan_kind}")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


class CommandGateway(DirectoryGateway):
    """
    Gateway running ldapsearch/ldapadd/ldapmodify.

    Records are passed on standard input; auth_opts are appended to every
    command unchanged.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.uri = config.get('uri', DEFAULT_URI)
        self.auth_opts = list(config.get('auth_opts') or DEFAULT_AUTH_OPTS)
        self.ldapsearch = config.get('ldapsearch_path', '/usr/bin/ldapsearch')
        self.ldapadd = config.get('ldapadd_path', '/usr/bin/ldapadd')
        self.ldapmodify = config.get('ldapmodify_path', '/usr/bin/ldapmodify')
        self.command_timeout = config.get('command_timeout', 60)

    def connect(self) -> None:
        """
        Check that the command line tools can be run.

        Raises:
            GatewayConnectionError: If any tool is missing or not executable
        """
        missing = [path for path in (self.ldapsearch, self.ldapadd, self.ldapmodify) if not shutil.which(path)]
        if missing:
            raise GatewayConnectionError(f"LDAP command line tools not found or not executable: {', '.join(missing)}")
        logger.info(f"Using OpenLDAP command line tools against {self.uri}")

    def _run(self, command: List[str], input_text: Optional[str] = None) -> subprocess.CompletedProcess:
        logger.debug(f"Running: {' '.join(command[:len(command) - len(self.auth_opts)])}")
        try:
            return subprocess.run(
                command,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.command_timeout
            )
        except FileNotFoundError as e:
            raise GatewayConnectionError(f"LDAP command not available: {e}")
        except subprocess.TimeoutExpired:
            raise GatewayError(f"{command[0]} timed out after {self.command_timeout}s",
                               record=input_text, transient=True)

    def search(self, dn: str):
        command = [self.ldapsearch, '-H', self.uri, '-b', dn, '-s', 'base', '-LLL', '-d', '0'] + self.auth_opts
        result = self._run(command)
        if result.returncode == 0:
            logger.debug(f"ldapsearch >>\n{result.stdout}")
            return result.stdout
        if result.returncode == RESULT_NO_SUCH_OBJECT or 'No such object (32)' in result.stderr:
            logger.debug(f"Could not find object: {dn}")
            return NOT_FOUND
        raise GatewayError(f"ldapsearch failed for {dn} (exit {result.returncode}): {result.stderr.strip()}",
                           transient="Can't contact LDAP server" in result.stderr)

    def _apply(self, executable: str, record: str) -> None:
        command = [executable, '-H', self.uri, '-d', '0'] + self.auth_opts
        logger.debug(f"\n\n{record}")
        result = self._run(command, input_text=record)
        if result.returncode != 0:
            raise GatewayError(f"LDAP modify error (exit {result.returncode}):\n{result.stderr.strip()}",
                               record=record)
        logger.debug(result.stdout)

    def create(self, record: str) -> None:
        self._apply(self.ldapadd, record)

    def modify(self, record: str) -> None:
        self._apply(self.ldapmodify, record)


class Ldap3Gateway(DirectoryGateway):
    """
    Gateway speaking LDAP through ldap3.

    Supports simple binds, SASL EXTERNAL (typically over ldapi) and anonymous
    access, with LDAPS or StartTLS.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the gateway from the directory configuration section.

        Args:
            config: Directory configuration dictionary
        """
        self.config = config
        self.server_url = config['server_url']
        self.auth_method = config.get('auth_method', 'simple').lower()
        self.bind_dn = config.get('bind_dn')
        self.bind_password = config.get('bind_password')

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        self.error_config = config.get('error_handling', {})

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self) -> None:
        """
        Connect and bind, retrying failed attempts.

        Raises:
            GatewayConnectionError: If every attempt fails
        """
        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                connect_timeout=self.connection_timeout
            )
        except LDAPException as e:
            raise GatewayConnectionError(f"Failed to create LDAP server: {e}")

        try:
            retry_call(
                self._open,
                exceptions=(LDAPSocketOpenError, LDAPBindError),
                operation_name=f"LDAP connection to {self.server_url}",
                **retry_settings(self.error_config)
            )
        except MaxRetriesExceeded as e:
            raise GatewayConnectionError(f"Failed to connect to LDAP: {e}")
        except LDAPException as e:
            raise GatewayConnectionError(f"Unexpected LDAP error while connecting: {e}")

        self._connected = True
        logger.info(f"Connected to {self.server_url} (auth: {self.auth_method})")

    def _connection_kwargs(self) -> Dict[str, Any]:
        if self.auth_method == 'sasl_external':
            return {'authentication': SASL, 'sasl_mechanism': EXTERNAL}
        if self.auth_method == 'anonymous':
            return {'authentication': ANONYMOUS}
        return {'authentication': SIMPLE, 'user': self.bind_dn, 'password': self.bind_password}

    def _open(self) -> None:
        self.connection = Connection(
            self.server,
            auto_bind=False,
            receive_timeout=self.receive_timeout,
            **self._connection_kwargs()
        )
        try:
            self.connection.open()
            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPBindError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")
            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")
        except LDAPException:
            self._drop_connection()
            raise

    def _drop_connection(self) -> None:
        if self.connection is not None:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while closing connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for the connection.

        Returns:
            Tls object, or None when neither LDAPS nor StartTLS is used
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}
        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file

        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise GatewayConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self) -> None:
        if self._connected:
            self._drop_connection()
            self._connected = False
            logger.debug("LDAP connection closed")

    def _require_connection(self) -> None:
        if not self._connected:
            raise GatewayError("Not connected to LDAP server")

    def search(self, dn: str):
        self._require_connection()
        try:
            success = self.connection.search(
                search_base=dn,
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=ALL_ATTRIBUTES
            )
        except LDAPException as e:
            raise GatewayError(f"LDAP search failed for {dn}: {e}", transient=isinstance(e, LDAPSocketOpenError))

        if not success:
            if self.connection.result.get('result') == RESULT_NO_SUCH_OBJECT:
                logger.debug(f"Could not find object: {dn}")
                return NOT_FOUND
            raise GatewayError(f"LDAP search failed for {dn}: {self.connection.result}")

        ldif = self.connection.response_to_ldif()
        logger.debug(f"ldapsearch >>\n{ldif}")
        return ldif

    def create(self, record: str) -> None:
        self._require_connection()
        parsed = read_change_record(record)
        if parsed.changetype != CHANGETYPE_ADD:
            raise GatewayError(f"create() needs an entry record, got changetype {parsed.changetype}", record=record)

        attributes = {name: values for name, values in parsed.attributes.items()}
        logger.debug(f"\n\n{record}")
        self._check(lambda: self.connection.add(parsed.dn, attributes=attributes), record)

    def modify(self, record: str) -> None:
        self._require_connection()
        parsed = read_change_record(record)
        if parsed.changetype != CHANGETYPE_MODIFY:
            raise GatewayError(f"modify() needs a modify record, got changetype {parsed.changetype}", record=record)

        changes = {}
        for name, steps in parsed.changes.items():
            changes[name] = [(MODIFY_OPERATIONS[operation], values) for operation, values in steps]
        logger.debug(f"\n\n{record}")
        self._check(lambda: self.connection.modify(parsed.dn, changes), record)

    def _check(self, operation, record: str) -> None:
        try:
            success = operation()
        except LDAPException as e:
            raise GatewayError(f"LDAP modify error: {e}", record=record)
        if not success:
            raise GatewayError(f"LDAP modify error: {self.connection.result}", record=record)


GATEWAY_TYPES = {
    'ldap3': Ldap3Gateway,
    'command': CommandGateway,
}


def create_gateway(config: Dict[str, Any]) -> DirectoryGateway:
    """
    Build the gateway named by config['type'].

    Args:
        config: Directory configuration section

    Returns:
        An unconnected gateway
    """
    gateway_type = config.get('type', 'ldap3')
    try:
        gateway_class = GATEWAY_TYPES[gateway_type]
    except KeyError:
        raise ValueError(f"Unknown gateway type: {gateway_type}")
    return gateway_class(config)
