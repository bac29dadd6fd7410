"""
In-memory account directory adapter - Implements AccountDirectory protocol.

This module provides a process-local stand-in for the identity provider:
bearer tokens and contact addresses resolve to account ids, and
registrations are logged for demo purposes.
"""

import logging
import secrets
import threading
import uuid

logger = logging.getLogger(__name__)


class InMemoryAccountDirectory:
    """
    Implements AccountDirectory protocol over in-process dictionaries.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - production deployments put a real
    identity provider behind the same port.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, str] = {}
        self._contacts: dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, email: str, account_id: str | None = None, token: str | None = None) -> tuple[str, str]:
        """
        Register an account and issue it a bearer token.

        Args:
            email: Contact address; stored stripped and lowercased
            account_id: Account id to use; generated when omitted
            token: Bearer token to issue; generated when omitted

        Returns:
            Tuple of (account_id, token)
        """
        account_id = account_id or uuid.uuid4().hex
        token = token or secrets.token_urlsafe(32)
        with self._lock:
            self._contacts[email.strip().lower()] = account_id
            self._tokens[token] = account_id
        logger.info("[DIRECTORY] Registered account for %s", email.strip().lower())
        return account_id, token

    def authenticate(self, token: str) -> str | None:
        with self._lock:
            return self._tokens.get(token)

    def find_by_contact(self, contact: str) -> str | None:
        with self._lock:
            return self._contacts.get(contact.strip().lower())

    def delete(self, account_id: str) -> None:
        with self._lock:
            self._tokens = {t: a for t, a in self._tokens.items() if a != account_id}
            self._contacts = {c: a for c, a in self._contacts.items() if a != account_id}
        logger.info("[DIRECTORY] Removed account and revoked its tokens")
