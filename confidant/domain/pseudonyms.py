"""
Pseudonym derivation - one-way, domain-isolated identifiers.

The standard pseudonym is HMAC-SHA256(standard key, account id). Every other
domain pseudonym is HMAC-SHA256(domain key, standard pseudonym), so a holder
of one domain key cannot link that domain's pseudonyms to any other domain.
"""

import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass, field

from .exceptions import ConfigurationError, InvalidArgument
from .models import PseudonymDomain


def _hmac_hex(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class PseudonymDeriver:
    """
    Stateless pseudonym calculator over a fixed set of per-domain keys.

    Keys absent from the mapping (or empty) are treated as not provisioned.
    """

    keys: Mapping[PseudonymDomain, str] = field(default_factory=dict)

    def derive(
        self,
        domain: PseudonymDomain,
        account_id: str | None = None,
        standard_pseudonym: str | None = None,
    ) -> str:
        """
        Derive the pseudonym for `domain`.

        A caller already holding the standard pseudonym passes it as
        `standard_pseudonym` and need not supply the account id.

        Raises:
            ConfigurationError: If a key needed for the derivation is missing
            InvalidArgument: If neither account id nor standard pseudonym is given
        """
        domain = PseudonymDomain(domain)
        if domain is PseudonymDomain.STANDARD:
            if not account_id:
                raise InvalidArgument("Standard pseudonym requires an account id.")
            return _hmac_hex(self._key(PseudonymDomain.STANDARD), account_id)

        if not standard_pseudonym:
            if not account_id:
                raise InvalidArgument("Account id or standard pseudonym is required.")
            standard_pseudonym = self.standard(account_id)
        return _hmac_hex(self._key(domain), standard_pseudonym)

    def standard(self, account_id: str) -> str:
        return self.derive(PseudonymDomain.STANDARD, account_id=account_id)

    def profile(self, suuid: str) -> str:
        return self.derive(PseudonymDomain.PROFILE, standard_pseudonym=suuid)

    def health(self, suuid: str) -> str:
        return self.derive(PseudonymDomain.HEALTH, standard_pseudonym=suuid)

    def test(self, suuid: str) -> str:
        return self.derive(PseudonymDomain.TEST, standard_pseudonym=suuid)

    def exposure(self, suuid: str) -> str:
        return self.derive(PseudonymDomain.EXPOSURE, standard_pseudonym=suuid)

    def membership(self, suuid: str) -> str:
        return self.derive(PseudonymDomain.MEMBERSHIP, standard_pseudonym=suuid)

    def _key(self, domain: PseudonymDomain) -> str:
        key = self.keys.get(domain)
        if not key:
            raise ConfigurationError(f"Key for pseudonym domain {domain.value} is not set.")
        return key
