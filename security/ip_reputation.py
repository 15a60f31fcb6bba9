"""
Heuristic IP reputation.

Geolocation and VPN/proxy/Tor detection here are coarse local heuristics
(first-octet buckets, a few hosting ranges, user-agent keywords). Both are
strategies so a real IP-intelligence provider can be dropped in.
"""
import ipaddress
import logging
import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Callable, Dict, Iterable, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

PRIVATE_RANGES = (
    ("10.0.0.0", "10.255.255.255"),
    ("172.16.0.0", "172.31.255.255"),
    ("192.168.0.0", "192.168.255.255"),
    ("127.0.0.0", "127.255.255.255"),
)

# Hosting providers commonly used as VPN exits: (first octet, second octet low, high)
HOSTING_RANGES = (
    (104, 248, 255),
    (149, 248, 248),
)

# First octets that look like large cloud providers
CLOUD_FIRST_OCTETS = {52, 54}

VPN_INDICATORS = ("vpn", "proxy", "tor", "anonymizer", "hide", "mask", "tunnel")


def ip_to_int(ip: str) -> int:
    parts = (ip or "").strip().split(".")
    if len(parts) != 4:
        raise ValueError(f"Not an IPv4 address: {ip!r}")
    value = 0
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            raise ValueError(f"Not an IPv4 address: {ip!r}")
        octet = int(part)
        if octet > 255:
            raise ValueError(f"Not an IPv4 address: {ip!r}")
        value = value * 256 + octet
    return value


def is_ip_in_range(ip: str, start: str, end: str) -> bool:
    return ip_to_int(start) <= ip_to_int(ip) <= ip_to_int(end)


def is_ipv4(ip: str) -> bool:
    try:
        ip_to_int(ip)
    except ValueError:
        return False
    return True


def is_private_ip(ip: str) -> bool:
    if is_ipv4(ip):
        return any(is_ip_in_range(ip, start, end) for start, end in PRIVATE_RANGES)
    addr = ipaddress.ip_address(ip)
    return addr.is_private or addr.is_loopback


def _octets(ip: str) -> Optional[Tuple[int, ...]]:
    if not is_ipv4(ip):
        return None
    return tuple(int(p) for p in ip.strip().split("."))


def coarse_country(ip: str) -> str:
    octets = _octets(ip)
    if octets is None:
        return "Unknown"
    first = octets[0]
    if 1 <= first <= 63:
        return "United States"
    if 64 <= first <= 95:
        return "Europe"
    if 96 <= first <= 127:
        return "Asia"
    if 128 <= first <= 191:
        return "North America"
    return "Other"


def coarse_region(ip: str) -> int:
    """
    Geographic bucket (1-4) used for dispersion scoring.
    """
    octets = _octets(ip)
    if octets is None:
        return 4
    first = octets[0]
    if 1 <= first <= 50:
        return 1
    if 51 <= first <= 100:
        return 2
    if 101 <= first <= 150:
        return 3
    return 4


class GeoLocator(Protocol):
    def locate(self, ip: str) -> Dict[str, str]:
        ...


@dataclass(frozen=True)
class AnonymizerVerdict:
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False


class AnonymizerDetector(Protocol):
    def detect(self, ip: str) -> AnonymizerVerdict:
        ...


def user_agent_suggests_vpn(user_agent: Optional[str]) -> bool:
    ua = (user_agent or "").lower()
    return any(indicator in ua for indicator in VPN_INDICATORS)


class CoarseGeoLocator:
    """Not authoritative: country is guessed from the first octet."""

    def locate(self, ip: str) -> Dict[str, str]:
        return {
            "country": coarse_country(ip),
            "region": "Unknown Region",
            "city": "Unknown City",
            "isp": "Unknown ISP",
        }


class HeuristicAnonymizerDetector:
    def __init__(self, tor_exit_nodes: Iterable[str] = ()):
        self.tor_exit_nodes = set(tor_exit_nodes)

    @staticmethod
    def is_hosting_ip(ip: str) -> bool:
        octets = _octets(ip)
        if octets is None:
            return False
        return any(octets[0] == first and low <= octets[1] <= high for first, low, high in HOSTING_RANGES)

    def detect(self, ip: str) -> AnonymizerVerdict:
        hosting = self.is_hosting_ip(ip)
        return AnonymizerVerdict(
            is_vpn=hosting,
            is_proxy=hosting,
            is_tor=ip in self.tor_exit_nodes,
        )


@dataclass
class IPInfo:
    ip: str
    threat_level: str = "low"
    reputation: int = 80
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False

    def to_dict(self):
        return asdict(self)


class IPReputationAnalyzer:
    def __init__(
        self,
        malicious_ranges: Sequence[Tuple[str, str, str]] = (),
        cache_ttl_seconds: float = 60 * 60,
        geo_locator: Optional[GeoLocator] = None,
        anonymizer_detector: Optional[AnonymizerDetector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.malicious_ranges = tuple(malicious_ranges)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.geo_locator = geo_locator or CoarseGeoLocator()
        self.anonymizer_detector = anonymizer_detector or HeuristicAnonymizerDetector()
        self._clock = clock
        self._cache: Dict[str, Tuple[IPInfo, float]] = {}
        self._lock = threading.Lock()

    def analyze_ip(self, ip: str, user_agent: Optional[str] = None) -> IPInfo:
        ip = (ip or "").strip()
        now = self._clock()

        with self._lock:
            cached = self._cache.get(ip)
        if cached and now - cached[1] < self.cache_ttl_seconds:
            info = cached[0]
        else:
            # Lookups run outside the lock
            info = self._compute(ip)
            with self._lock:
                self._cache[ip] = (info, now)

        # Cached facts are per address; the user agent applies per call
        if user_agent_suggests_vpn(user_agent) and not (info.is_vpn or info.is_proxy):
            info = self._penalize_anonymizer(replace(info, is_vpn=True))
        return info

    def analyze_bulk(self, ips: Iterable[str]) -> Dict[str, IPInfo]:
        return {ip: self.analyze_ip(ip) for ip in ips}

    def _compute(self, ip: str) -> IPInfo:
        ipv4 = is_ipv4(ip)
        if not ipv4:
            # raises ValueError for anything that is not an address at all
            ipaddress.ip_address(ip)

        private = is_private_ip(ip)
        info = IPInfo(ip=ip)
        info.threat_level = self._threat_level(ip, ipv4, private)
        info.reputation = self._reputation(ip, private)

        verdict = self.anonymizer_detector.detect(ip)
        info.is_vpn, info.is_proxy, info.is_tor = verdict.is_vpn, verdict.is_proxy, verdict.is_tor
        if info.is_vpn or info.is_proxy:
            info = self._penalize_anonymizer(info)

        try:
            geo = self.geo_locator.locate(ip) or {}
        except Exception:
            logger.warning("Geolocation failed for %s", ip, exc_info=True)
            geo = {}
        for name in ("country", "region", "city", "isp"):
            if name in geo:
                setattr(info, name, geo[name])

        return info

    @staticmethod
    def _penalize_anonymizer(info: IPInfo) -> IPInfo:
        info.reputation = max(0, min(100, info.reputation - 20))
        if info.threat_level == "low":
            info.threat_level = "medium"
        return info

    def _threat_level(self, ip: str, ipv4: bool, private: bool) -> str:
        if ipv4:
            for start, end, reason in self.malicious_ranges:
                if is_ip_in_range(ip, start, end):
                    logger.info("%s matched flagged range %s-%s (%s)", ip, start, end, reason)
                    return "high"
        if private:
            return "medium"
        return "low"

    @staticmethod
    def _reputation(ip: str, private: bool) -> int:
        reputation = 80
        if private:
            reputation -= 20
        octets = _octets(ip)
        if octets and octets[0] in CLOUD_FIRST_OCTETS:
            reputation -= 10
        return reputation

    def sweep(self) -> int:
        cutoff = self._clock() - self.cache_ttl_seconds
        with self._lock:
            stale = [key for key, (_, fetched_at) in list(self._cache.items()) if fetched_at <= cutoff]
            for key in stale:
                del self._cache[key]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
