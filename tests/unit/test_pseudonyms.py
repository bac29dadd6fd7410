"""
Unit tests for PseudonymDeriver.

Tests verify:
- Derivation is deterministic and one-way (HMAC-SHA256 hex)
- Domains are isolated from each other and from the account id
- Missing keys surface as configuration errors
"""

import hashlib
import hmac

import pytest

from confidant.domain.exceptions import ConfigurationError, FailedPrecondition, InvalidArgument
from confidant.domain.models import PseudonymDomain
from confidant.domain.pseudonyms import PseudonymDeriver


def expected_hmac(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()


class TestStandardPseudonym:
    """Tests for the standard (root) pseudonym."""

    def test_standard_is_hmac_of_account_id(self, deriver: PseudonymDeriver) -> None:
        """Standard pseudonym is HMAC-SHA256(standard key, account id) in hex."""
        assert deriver.standard("account-1") == expected_hmac("test-standard-key", "account-1")

    def test_standard_is_deterministic(self, deriver: PseudonymDeriver) -> None:
        """Same account id always yields the same pseudonym."""
        assert deriver.standard("account-1") == deriver.standard("account-1")

    def test_different_accounts_differ(self, deriver: PseudonymDeriver) -> None:
        assert deriver.standard("account-1") != deriver.standard("account-2")

    def test_standard_requires_account_id(self, deriver: PseudonymDeriver) -> None:
        """Standard domain cannot be derived from a pseudonym."""
        with pytest.raises(InvalidArgument):
            deriver.derive(PseudonymDomain.STANDARD, standard_pseudonym="abc")

    def test_pseudonym_is_64_hex_chars(self, deriver: PseudonymDeriver) -> None:
        pseudonym = deriver.standard("account-1")
        assert len(pseudonym) == 64
        assert all(c in "0123456789abcdef" for c in pseudonym)


class TestDomainPseudonyms:
    """Tests for the chained domain pseudonyms."""

    @pytest.mark.parametrize(
        "domain",
        [
            PseudonymDomain.PROFILE,
            PseudonymDomain.HEALTH,
            PseudonymDomain.TEST,
            PseudonymDomain.EXPOSURE,
            PseudonymDomain.MEMBERSHIP,
        ],
    )
    def test_domain_is_hmac_of_standard(self, deriver: PseudonymDeriver, domain: PseudonymDomain) -> None:
        """Each domain pseudonym is HMAC(domain key, standard pseudonym)."""
        suuid = deriver.standard("account-1")
        assert deriver.derive(domain, account_id="account-1") == expected_hmac(f"test-{domain.value}-key", suuid)

    def test_account_id_and_precomputed_agree(self, deriver: PseudonymDeriver) -> None:
        """Deriving from the account id or from the standard pseudonym is equivalent."""
        suuid = deriver.standard("account-1")
        from_account = deriver.derive(PseudonymDomain.HEALTH, account_id="account-1")
        from_standard = deriver.derive(PseudonymDomain.HEALTH, standard_pseudonym=suuid)
        assert from_account == from_standard == deriver.health(suuid)

    def test_domains_are_isolated(self, deriver: PseudonymDeriver) -> None:
        """No two domains produce the same pseudonym for one user."""
        pseudonyms = {deriver.derive(domain, account_id="account-1") for domain in PseudonymDomain}
        assert len(pseudonyms) == len(PseudonymDomain)

    def test_domain_accepts_string_value(self, deriver: PseudonymDeriver) -> None:
        assert deriver.derive("profile", account_id="account-1") == deriver.derive(
            PseudonymDomain.PROFILE, account_id="account-1"
        )

    def test_requires_account_or_standard(self, deriver: PseudonymDeriver) -> None:
        with pytest.raises(InvalidArgument):
            deriver.derive(PseudonymDomain.HEALTH)

    def test_key_change_changes_pseudonym(self) -> None:
        """Rotating a domain key produces unlinkable pseudonyms in that domain only."""
        keys = {domain: f"k-{domain.value}" for domain in PseudonymDomain}
        rotated = {**keys, PseudonymDomain.HEALTH: "rotated"}
        before, after = PseudonymDeriver(keys), PseudonymDeriver(rotated)

        assert before.derive(PseudonymDomain.HEALTH, account_id="a") != after.derive(PseudonymDomain.HEALTH, account_id="a")
        assert before.derive(PseudonymDomain.TEST, account_id="a") == after.derive(PseudonymDomain.TEST, account_id="a")


class TestMissingKeys:
    """Tests for unprovisioned keys."""

    def test_missing_domain_key_raises_configuration_error(self) -> None:
        deriver = PseudonymDeriver({PseudonymDomain.STANDARD: "s"})
        with pytest.raises(ConfigurationError):
            deriver.derive(PseudonymDomain.HEALTH, account_id="account-1")

    def test_empty_key_is_not_provisioned(self) -> None:
        deriver = PseudonymDeriver({PseudonymDomain.STANDARD: ""})
        with pytest.raises(ConfigurationError):
            deriver.standard("account-1")

    def test_configuration_error_is_failed_precondition(self) -> None:
        """Missing configuration surfaces as a failed precondition."""
        assert issubclass(ConfigurationError, FailedPrecondition)
