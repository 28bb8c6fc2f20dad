"""Reference tables for VPN/proxy heuristics.

Both tables are data, not logic: they ship with a small illustrative
default and are meant to be replaced or extended from a maintained source
(``ReferenceData.load`` / ``ReferenceData.update``). Neither default is
exhaustive, and matches are heuristics with accepted false positives
(corporate egress, travellers, cloud-hosted browsers).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union
import json


DEFAULT_VPN_ASNS: Dict[str, str] = {
    "AS9009": "M247 Ltd",
    "AS13335": "Cloudflare",
    "AS16509": "Amazon AWS",
    "AS14618": "Amazon AWS",
    "AS15169": "Google",
    "AS396982": "Google Cloud",
    "AS8075": "Microsoft Azure",
    "AS14061": "DigitalOcean",
    "AS20473": "Vultr (Choopa)",
    "AS24940": "Hetzner Online",
    "AS16276": "OVH",
    "AS63949": "Linode (Akamai)",
    "AS212238": "Datacamp Limited",
    "AS60068": "Datacamp Limited (CDN77)",
    "AS136787": "TEFINCOM (NordVPN)",
}

DEFAULT_COUNTRY_TIMEZONES: Dict[str, Tuple[str, ...]] = {
    "US": (
        "America/New_York", "America/Chicago", "America/Denver", "America/Phoenix",
        "America/Los_Angeles", "America/Anchorage", "Pacific/Honolulu", "America/Detroit",
        "America/Indiana/Indianapolis", "America/Boise",
    ),
    "VE": ("America/Caracas",),
    "ES": ("Europe/Madrid", "Atlantic/Canary", "Africa/Ceuta"),
    "MX": (
        "America/Mexico_City", "America/Cancun", "America/Monterrey", "America/Tijuana",
        "America/Merida", "America/Chihuahua", "America/Hermosillo", "America/Mazatlan",
    ),
    "AR": ("America/Argentina/Buenos_Aires", "America/Argentina/Cordoba", "America/Argentina/Mendoza"),
    "CO": ("America/Bogota",),
    "PE": ("America/Lima",),
    "CL": ("America/Santiago", "Pacific/Easter"),
    "EC": ("America/Guayaquil", "Pacific/Galapagos"),
    "UY": ("America/Montevideo",),
    "BR": (
        "America/Sao_Paulo", "America/Manaus", "America/Fortaleza", "America/Recife",
        "America/Bahia", "America/Belem",
    ),
    "CA": (
        "America/Toronto", "America/Vancouver", "America/Edmonton", "America/Winnipeg",
        "America/Halifax", "America/St_Johns", "America/Regina",
    ),
    "GB": ("Europe/London",),
    "IE": ("Europe/Dublin",),
    "PT": ("Europe/Lisbon", "Atlantic/Azores", "Atlantic/Madeira"),
    "FR": ("Europe/Paris",),
    "DE": ("Europe/Berlin",),
    "NL": ("Europe/Amsterdam",),
    "IT": ("Europe/Rome",),
    "RU": ("Europe/Moscow", "Asia/Vladivostok", "Asia/Yekaterinburg", "Asia/Novosibirsk"),
    "CN": ("Asia/Shanghai", "Asia/Urumqi"),
    "JP": ("Asia/Tokyo",),
    "AU": ("Australia/Sydney", "Australia/Melbourne", "Australia/Perth", "Australia/Brisbane", "Australia/Adelaide"),
    "IN": ("Asia/Kolkata", "Asia/Calcutta"),
}


@dataclass
class ReferenceData:
    """Pluggable lookup tables for VPN/proxy heuristics.

    Attributes:
        vpn_asns: ASN -> provider name for known VPN/hosting networks
        country_timezones: ISO country code -> expected IANA timezones
    """

    vpn_asns: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_VPN_ASNS))
    country_timezones: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_COUNTRY_TIMEZONES)
    )

    def vpn_provider_for(self, asn: Optional[str]) -> Optional[str]:
        """Return the known provider name for ``asn``, if listed."""
        if not asn:
            return None
        return self.vpn_asns.get(asn.upper())

    def timezone_mismatch(self, country: Optional[str], timezone: Optional[str]) -> bool:
        """Check a browser timezone against the IP country's expected set.

        Countries missing from the table never report a mismatch.
        """
        if not country or not timezone:
            return False
        expected = self.country_timezones.get(country.upper())
        if not expected:
            return False
        return timezone not in expected

    def update(
        self,
        vpn_asns: Optional[Dict[str, str]] = None,
        country_timezones: Optional[Dict[str, Iterable[str]]] = None,
    ) -> None:
        """Merge additional entries into the tables."""
        if vpn_asns:
            self.vpn_asns.update({k.upper(): v for k, v in vpn_asns.items()})
        if country_timezones:
            self.country_timezones.update(
                {k.upper(): tuple(v) for k, v in country_timezones.items()}
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vpn_asns": dict(self.vpn_asns),
            "country_timezones": {k: list(v) for k, v in self.country_timezones.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], extend_defaults: bool = False) -> "ReferenceData":
        """Create tables from a dictionary.

        Args:
            data: ``{"vpn_asns": {...}, "country_timezones": {...}}``
            extend_defaults: Merge into the defaults instead of replacing them
        """
        if extend_defaults:
            reference = cls()
        else:
            reference = cls(vpn_asns={}, country_timezones={})
        reference.update(data.get("vpn_asns"), data.get("country_timezones"))
        return reference

    def save(self, path: Union[str, Path]) -> None:
        with open(Path(path), "w") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    @classmethod
    def load(cls, path: Union[str, Path], extend_defaults: bool = False) -> "ReferenceData":
        with open(Path(path)) as f:
            data = json.load(f)
        return cls.from_dict(data, extend_defaults=extend_defaults)
