from ipgate.cidr import parse_spec
from ipgate.collector import CandidateSet
from ipgate.ipacl import address_allowed, first_match, is_allowed


def make_candidates(*addresses):
    return CandidateSet.from_addresses(addresses)


def test_empty_allowlist_denies_everyone():
    candidates = make_candidates("8.8.8.8", "2606:4700:4700::1111")
    assert not is_allowed(candidates, [])
    assert not is_allowed(candidates, ["", "   "])


def test_no_candidates_never_match():
    assert not is_allowed(CandidateSet.empty(), ["0.0.0.0/0", "::/0"])


def test_any_candidate_matching_any_entry_allows():
    candidates = make_candidates("1.1.1.1", "2606:4700:4700::1111")
    assert is_allowed(candidates, ["203.0.113.0/24", "2606:4700::/32"])
    assert not is_allowed(candidates, ["203.0.113.0/24", "2001:db8::/32"])


def test_malformed_entries_are_skipped():
    candidates = make_candidates("8.8.8.8")
    assert is_allowed(candidates, ["not-an-ip", "8.8.8.0/33", " 8.8.8.0/24 "])


def test_first_match_returns_entry_in_allowlist_order():
    candidates = make_candidates("8.8.8.8", "1.1.1.1")
    assert first_match(candidates, ["1.1.1.0/24", "8.8.8.8"]) == "1.1.1.0/24"
    assert first_match(candidates, ["9.9.9.9"]) is None


def test_compiled_entries_are_accepted():
    candidates = make_candidates("8.8.8.8")
    spec = parse_spec("8.8.0.0/16")
    assert first_match(candidates, [spec]) is spec


def test_address_allowed():
    assert address_allowed("192.168.10.4", ["192.168.10.0/24"])
    assert not address_allowed("192.168.11.4", ["192.168.10.0/24"])
    assert not address_allowed("testclient", ["0.0.0.0/0"])
    assert not address_allowed("192.168.10.4", [])
