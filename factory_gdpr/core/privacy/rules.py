from __future__ import annotations

"""
Field-level anonymization rules.

Rules are registered once when the registry is built and cannot be changed
afterwards. Every transform is irreversible: hashes drop their input,
generalization and noise drop the original precision.
"""

import ipaddress
import random
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from factory_gdpr.core.crypto import CryptoBox
from factory_gdpr.core.errors import UnsupportedFieldError
from factory_gdpr.core.privacy.models import AnonymizationTechnique, DataCategory


Transform = Callable[[str], str]

_NON_DIGITS = re.compile(r"\D+")


@dataclass(frozen=True)
class AnonymizationRule:
    field_name: str
    technique: AnonymizationTechnique
    category: DataCategory
    default_retention_days: int
    transform: Transform


def _hash8(crypto: CryptoBox, value: str) -> str:
    return crypto.keyed_hash(value)[:8]


def pseudonymize_email(crypto: CryptoBox) -> Transform:
    def _t(value: str) -> str:
        local, at, domain = str(value).rpartition("@")
        if not at:
            return f"user_{_hash8(crypto, str(value))}"
        return f"user_{_hash8(crypto, local)}@{domain}"

    return _t


def mask_phone(value: str) -> str:
    digits = _NON_DIGITS.sub("", str(value))
    if len(digits) >= 10:
        return digits[:3] + "*" * (len(digits) - 6) + digits[-3:]
    return "*" * len(str(value))


def pseudonymize_name(crypto: CryptoBox) -> Transform:
    def _t(value: str) -> str:
        return f"Person_{_hash8(crypto, str(value))}"

    return _t


def generalize_ip(value: str) -> str:
    try:
        ip = ipaddress.ip_address(str(value).strip())
    except ValueError:
        return "0.0.0.0"
    if ip.version == 4:
        a, b, _, _ = str(ip).split(".")
        return f"{a}.{b}.0.0"
    return str(ipaddress.ip_network(f"{ip}/32", strict=False).network_address)


def add_location_noise(noise_degrees: float, rng: Optional[random.Random] = None) -> Transform:
    half = float(noise_degrees) / 2.0
    source = rng or random.SystemRandom()

    def _t(value: str) -> str:
        parts = str(value).split(",")
        if len(parts) != 2:
            return "***"
        try:
            lat, lon = float(parts[0].strip()), float(parts[1].strip())
        except ValueError:
            return "***"
        lat += source.uniform(-half, half)
        lon += source.uniform(-half, half)
        return f"{lat:.6f},{lon:.6f}"

    return _t


def default_rules(
    crypto: CryptoBox, *, location_noise_degrees: float = 0.001, rng: Optional[random.Random] = None
) -> List[AnonymizationRule]:
    return [
        AnonymizationRule(
            "email",
            AnonymizationTechnique.PSEUDONYMIZATION,
            DataCategory.PERSONAL_IDENTIFIABLE,
            2555,
            pseudonymize_email(crypto),
        ),
        AnonymizationRule(
            "phone",
            AnonymizationTechnique.DATA_MASKING,
            DataCategory.PERSONAL_IDENTIFIABLE,
            2555,
            mask_phone,
        ),
        AnonymizationRule(
            "name",
            AnonymizationTechnique.PSEUDONYMIZATION,
            DataCategory.PERSONAL_IDENTIFIABLE,
            2555,
            pseudonymize_name(crypto),
        ),
        AnonymizationRule(
            "ipAddress",
            AnonymizationTechnique.GENERALIZATION,
            DataCategory.TECHNICAL,
            365,
            generalize_ip,
        ),
        AnonymizationRule(
            "location",
            AnonymizationTechnique.NOISE_ADDITION,
            DataCategory.SENSITIVE_PERSONAL,
            1095,
            add_location_noise(location_noise_degrees, rng),
        ),
    ]


class AnonymizationRuleRegistry:
    """
    Read-only field_name -> rule map.

    extra_rules may add fields or replace a default rule for the same field;
    nothing can be registered after construction.
    """

    def __init__(
        self,
        crypto: CryptoBox,
        extra_rules: Iterable[AnonymizationRule] = (),
        *,
        location_noise_degrees: float = 0.001,
        rng: Optional[random.Random] = None,
    ):
        rules: Dict[str, AnonymizationRule] = {}
        for r in default_rules(crypto, location_noise_degrees=location_noise_degrees, rng=rng):
            rules[r.field_name] = r
        for r in extra_rules:
            if not isinstance(r, AnonymizationRule):
                raise TypeError("extra_rules must contain AnonymizationRule instances")
            rules[r.field_name] = r
        self._rules: Mapping[str, AnonymizationRule] = MappingProxyType(rules)

    def get(self, field_name: str) -> Optional[AnonymizationRule]:
        return self._rules.get(str(field_name))

    def has(self, field_name: str) -> bool:
        return str(field_name) in self._rules

    def fields(self) -> List[str]:
        return sorted(self._rules.keys())

    def require(self, field_name: str) -> AnonymizationRule:
        rule = self.get(field_name)
        if rule is None:
            raise UnsupportedFieldError(field_name=str(field_name))
        return rule

    def apply(self, field_name: str, value: str) -> Tuple[str, AnonymizationTechnique]:
        rule = self.require(field_name)
        return rule.transform(str(value)), rule.technique
