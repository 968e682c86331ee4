"""Test the DNS-01 challenge verifier against a mocked resolver."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import dns.exception
import dns.resolver
import pytest

from dns_engine.certificates.verifier import (
    ChallengeVerifier,
    DnsChallengeVerifier,
    all_verified,
    challenge_record_name,
)
from dns_engine.core.errors import ChallengeLookupError
from dns_engine.core.models import Challenge


def txt(*strings):
    return SimpleNamespace(strings=tuple(s.encode() for s in strings))


@pytest.fixture
def resolver():
    return MagicMock(spec=dns.resolver.Resolver)


class TestChallengeRecordName:

    def test_plain_domain(self):
        assert challenge_record_name("alice.example.com") == "_acme-challenge.alice.example.com"

    def test_wildcard_shares_base_name(self):
        assert challenge_record_name("*.alice.example.com") == "_acme-challenge.alice.example.com"


class TestDnsChallengeVerifier:

    def test_key_present(self, resolver):
        resolver.resolve.return_value = [txt("other"), txt("the-key")]
        verifier = DnsChallengeVerifier(resolver=resolver, timeout=3.0)

        assert verifier.verify("*.alice.example.com", "the-key")
        resolver.resolve.assert_called_once_with("_acme-challenge.alice.example.com", "TXT", lifetime=3.0)

    def test_key_split_across_strings(self, resolver):
        resolver.resolve.return_value = [txt("the-", "key")]

        assert DnsChallengeVerifier(resolver=resolver).verify("alice.example.com", "the-key")

    def test_key_absent(self, resolver):
        resolver.resolve.return_value = [txt("stale-key")]

        assert not DnsChallengeVerifier(resolver=resolver).verify("alice.example.com", "the-key")

    @pytest.mark.parametrize("error", [dns.resolver.NXDOMAIN(), dns.resolver.NoAnswer()])
    def test_missing_record_is_not_an_error(self, resolver, error):
        resolver.resolve.side_effect = error

        assert not DnsChallengeVerifier(resolver=resolver).verify("alice.example.com", "the-key")

    @pytest.mark.parametrize("error", [dns.exception.Timeout(), dns.resolver.NoNameservers()])
    def test_lookup_faults_raise(self, resolver, error):
        resolver.resolve.side_effect = error

        with pytest.raises(ChallengeLookupError):
            DnsChallengeVerifier(resolver=resolver).verify("alice.example.com", "the-key")

    def test_configured_nameservers(self):
        verifier = DnsChallengeVerifier(nameservers=["192.0.2.53"])
        assert verifier._resolver.nameservers == ["192.0.2.53"]


class ScriptedVerifier(ChallengeVerifier):

    def __init__(self, visible):
        self.visible = visible
        self.checked = []

    def verify(self, domain, challenge_key):
        self.checked.append(domain)
        return domain in self.visible


def challenge(domain):
    return Challenge(certificate_id=1, domain=domain, challenge_key=f"key-{domain}", challenge_url="https://ca.test/c")


class TestAllVerified:

    def test_all_visible(self):
        verifier = ScriptedVerifier({"a.example.com", "*.a.example.com"})
        assert all_verified([challenge("a.example.com"), challenge("*.a.example.com")], verifier)

    def test_stops_at_first_missing(self):
        verifier = ScriptedVerifier({"*.a.example.com"})

        assert not all_verified([challenge("a.example.com"), challenge("*.a.example.com")], verifier)
        assert verifier.checked == ["a.example.com"]

    def test_lookup_fault_propagates(self, resolver):
        resolver.resolve.side_effect = dns.exception.Timeout()

        with pytest.raises(ChallengeLookupError):
            all_verified([challenge("a.example.com")], DnsChallengeVerifier(resolver=resolver))
