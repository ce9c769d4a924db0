from ipgate.collector import CandidateCollector, CandidateSet, collect
from ipgate.diagnostics import Diagnostics


def test_collect_orders_sources_and_partitions():
    sources = [
        ("header:CF-Connecting-IP", None),
        ("header:X-Forwarded-For", "8.8.8.8, 10.0.0.1"),
        ("peer", "1.1.1.1"),
        ("form:client_ip", "2606:4700:4700::1111"),
    ]
    result = collect(sources)
    assert result.all == ("8.8.8.8", "1.1.1.1", "2606:4700:4700::1111")
    assert result.ipv4 == ("8.8.8.8", "1.1.1.1")
    assert result.ipv6 == ("2606:4700:4700::1111",)


def test_collect_prior_candidates_come_first():
    prior = CandidateSet.from_addresses(["9.9.9.9"])
    result = collect([("peer", "8.8.8.8")], prior)
    assert result.all == ("9.9.9.9", "8.8.8.8")


def test_collect_accepts_plain_prior_list():
    result = collect([("peer", "8.8.8.8")], ["8.8.8.8", "1.0.0.1"])
    assert result.all == ("8.8.8.8", "1.0.0.1")


def test_collect_deduplicates_across_sources():
    sources = [
        ("header:X-Real-IP", "8.8.8.8"),
        ("header:X-Forwarded-For", "1.1.1.1, 8.8.8.8"),
        ("peer", "1.1.1.1:4431"),
    ]
    assert collect(sources).all == ("8.8.8.8", "1.1.1.1")


def test_collect_drops_private_prior_and_sources():
    prior = ["192.168.0.10", "8.8.4.4"]
    result = collect([("peer", "127.0.0.1"), ("form:ip", "fe80::1%eth0")], prior)
    assert result.all == ("8.8.4.4",)
    assert result.ipv6 == ()


def test_collect_without_sources_is_empty():
    result = collect([])
    assert result == CandidateSet.empty()
    assert not result
    assert len(result) == 0


def test_all_is_union_of_families_in_first_seen_order():
    sources = [("a", "2606:4700:4700::1111 8.8.8.8"), ("b", "2001:4860:4860::8888, 1.1.1.1")]
    result = collect(sources)
    assert set(result.all) == set(result.ipv4) | set(result.ipv6)
    assert result.all == ("2606:4700:4700::1111", "8.8.8.8", "2001:4860:4860::8888", "1.1.1.1")


def test_collector_can_ignore_prior():
    prior = CandidateSet.from_addresses(["9.9.9.9"])
    assert CandidateCollector(include_prior=False).collect([("peer", "8.8.8.8")], prior).all == ("8.8.8.8",)
    assert CandidateCollector().collect([("peer", "8.8.8.8")], prior).all == ("9.9.9.9", "8.8.8.8")


def test_candidate_set_to_dict():
    original = CandidateSet.from_addresses(["8.8.8.8", "2606:4700:4700::1111"])
    assert original.to_dict() == {
        "ipv4": ["8.8.8.8"],
        "ipv6": ["2606:4700:4700::1111"],
        "all": ["8.8.8.8", "2606:4700:4700::1111"],
    }


def test_collect_reports_dropped_candidates():
    diagnostics = Diagnostics()
    collect([("header:X-Forwarded-For", "10.1.2.3, junk"), ("peer", "unknown")], diagnostics=diagnostics)
    stages = diagnostics.by_stage()
    assert stages["candidate"] == 1
    assert stages["header"] == 2
    assert stages["source"] == 1
