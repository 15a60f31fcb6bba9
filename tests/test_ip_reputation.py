import pytest

from conftest import CHROME_UA
from security.ip_reputation import (
    HeuristicAnonymizerDetector,
    IPReputationAnalyzer,
    coarse_region,
    ip_to_int,
    is_ip_in_range,
    is_private_ip,
)
from security.settings import _DEFAULTS


class CountingGeoLocator:
    def __init__(self):
        self.calls = 0

    def locate(self, ip):
        self.calls += 1
        return {"country": "Testland", "city": "Springfield"}


class BrokenGeoLocator:
    def locate(self, ip):
        raise ConnectionError("geo provider down")


@pytest.fixture
def analyzer(clock):
    return IPReputationAnalyzer(malicious_ranges=_DEFAULTS["IP_MALICIOUS_RANGES"], clock=clock)


class TestAddressHelpers:

    def test_ip_to_int(self):
        assert ip_to_int("0.0.0.0") == 0
        assert ip_to_int("1.2.3.4") == 16909060
        assert ip_to_int("255.255.255.255") == 2 ** 32 - 1

    @pytest.mark.parametrize("bad", ["256.1.1.1", "1.2.3", "a.b.c.d", "", "1.2.3.4.5", "\u0661\u0660.0.0.5"])
    def test_ip_to_int_rejects_garbage(self, bad):
        with pytest.raises(ValueError):
            ip_to_int(bad)

    def test_range_membership(self):
        assert is_ip_in_range("10.1.2.3", "10.0.0.0", "10.255.255.255")
        assert not is_ip_in_range("11.0.0.0", "10.0.0.0", "10.255.255.255")

    def test_private(self):
        assert is_private_ip("192.168.1.1")
        assert is_private_ip("127.0.0.1")
        assert is_private_ip("::1")
        assert not is_private_ip("8.8.8.8")
        assert not is_private_ip("2001:4860:4860::8888")

    @pytest.mark.parametrize("ip,region", [("8.8.8.8", 1), ("60.1.1.1", 2), ("120.1.1.1", 3), ("200.1.1.1", 4), ("::1", 4)])
    def test_coarse_region(self, ip, region):
        assert coarse_region(ip) == region


class TestAnalyzeIP:

    def test_public_address(self, analyzer):
        info = analyzer.analyze_ip("8.8.8.8", CHROME_UA)
        assert info.threat_level == "low"
        assert info.reputation == 80
        assert info.country == "United States"
        assert not (info.is_vpn or info.is_proxy or info.is_tor)

    def test_loopback_is_medium(self, analyzer):
        info = analyzer.analyze_ip("127.0.0.1", CHROME_UA)
        assert info.threat_level == "medium"
        assert info.reputation == 60

    @pytest.mark.parametrize("ip", ["10.0.0.5", "192.168.1.20", "172.20.0.1"])
    def test_flagged_ranges_are_high(self, analyzer, ip):
        assert analyzer.analyze_ip(ip, CHROME_UA).threat_level == "high"

    def test_cloud_octet_costs_reputation(self, analyzer):
        info = analyzer.analyze_ip("54.10.20.30", CHROME_UA)
        assert info.reputation == 70
        assert info.threat_level == "low"

    def test_hosting_range_is_vpn_and_proxy(self, analyzer):
        info = analyzer.analyze_ip("104.250.1.1", CHROME_UA)
        assert info.is_vpn and info.is_proxy
        assert info.reputation == 60
        assert info.threat_level == "medium"

    def test_vpn_user_agent(self, analyzer):
        info = analyzer.analyze_ip("8.8.8.8", "SuperVPN client 2.1")
        assert info.is_vpn is True
        assert info.is_proxy is False
        assert info.threat_level == "medium"

    def test_tor_exit_node(self, clock):
        analyzer = IPReputationAnalyzer(
            anonymizer_detector=HeuristicAnonymizerDetector(["185.220.101.1"]),
            clock=clock,
        )
        assert analyzer.analyze_ip("185.220.101.1", CHROME_UA).is_tor is True
        assert analyzer.analyze_ip("185.220.101.2", CHROME_UA).is_tor is False

    def test_ipv6(self, analyzer):
        public = analyzer.analyze_ip("2001:4860:4860::8888", CHROME_UA)
        assert public.threat_level == "low"
        assert public.reputation == 80
        assert public.country == "Unknown"

        loopback = analyzer.analyze_ip("::1", CHROME_UA)
        assert loopback.threat_level == "medium"
        assert loopback.reputation == 60

    def test_malformed_address(self, analyzer):
        with pytest.raises(ValueError):
            analyzer.analyze_ip("not-an-ip", CHROME_UA)

    def test_non_ascii_digits_are_malformed(self, analyzer):
        with pytest.raises(ValueError):
            analyzer.analyze_ip("\u0661\u0660.0.0.5", CHROME_UA)

    def test_reputation_stays_in_bounds(self, analyzer):
        for ip in ("8.8.8.8", "127.0.0.1", "54.1.1.1", "104.255.0.1", "10.0.0.1"):
            assert 0 <= analyzer.analyze_ip(ip, "vpn").reputation <= 100

    def test_custom_geo_locator(self, clock):
        analyzer = IPReputationAnalyzer(geo_locator=CountingGeoLocator(), clock=clock)
        info = analyzer.analyze_ip("8.8.8.8")
        assert info.country == "Testland"
        assert info.city == "Springfield"

    def test_geo_failure_is_tolerated(self, clock):
        analyzer = IPReputationAnalyzer(geo_locator=BrokenGeoLocator(), clock=clock)
        info = analyzer.analyze_ip("8.8.8.8")
        assert info.reputation == 80
        assert info.country is None

    def test_bulk(self, analyzer):
        infos = analyzer.analyze_bulk(["8.8.8.8", "127.0.0.1"])
        assert infos["8.8.8.8"].threat_level == "low"
        assert infos["127.0.0.1"].threat_level == "medium"


class TestCache:

    def test_hits_until_ttl(self, clock):
        geo = CountingGeoLocator()
        analyzer = IPReputationAnalyzer(cache_ttl_seconds=3600, geo_locator=geo, clock=clock)

        analyzer.analyze_ip("8.8.8.8", CHROME_UA)
        analyzer.analyze_ip("8.8.8.8", CHROME_UA)
        assert geo.calls == 1

        clock.advance(3600)
        analyzer.analyze_ip("8.8.8.8", CHROME_UA)
        assert geo.calls == 2

    def test_keyed_by_address_only(self, clock):
        geo = CountingGeoLocator()
        analyzer = IPReputationAnalyzer(geo_locator=geo, clock=clock)

        for i in range(20):
            analyzer.analyze_ip("8.8.8.8", f"{CHROME_UA} rotation/{i}")
        assert geo.calls == 1
        assert len(analyzer) == 1

    def test_user_agent_applies_after_cache_hit(self, clock):
        analyzer = IPReputationAnalyzer(clock=clock)

        plain = analyzer.analyze_ip("8.8.8.8", CHROME_UA)
        vpn = analyzer.analyze_ip("8.8.8.8", "vpn-client")
        again = analyzer.analyze_ip("8.8.8.8", CHROME_UA)

        assert vpn.is_vpn is True
        assert vpn.reputation == 60
        assert vpn.threat_level == "medium"
        assert plain.is_vpn is again.is_vpn is False
        assert again.reputation == 80

    def test_hosting_penalty_is_not_applied_twice(self, analyzer):
        info = analyzer.analyze_ip("104.250.1.1", "vpn-client")
        assert info.reputation == 60

    def test_sweep_drops_stale_entries(self, analyzer, clock):
        analyzer.analyze_ip("8.8.8.8", CHROME_UA)
        clock.advance(1800)
        analyzer.analyze_ip("1.1.1.1", CHROME_UA)
        clock.advance(1800)

        assert analyzer.sweep() == 1
        assert len(analyzer) == 1

    def test_reset(self, analyzer):
        analyzer.analyze_ip("8.8.8.8", CHROME_UA)
        analyzer.reset()
        assert len(analyzer) == 0
