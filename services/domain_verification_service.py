"""
Email Domain Verification Service - blocklist and DNS checks for sign-up emails
"""
import re
import logging
from typing import Optional

import httpx

from config.settings import settings
from models.domain_verification import DomainVerificationResult

logger = logging.getLogger(__name__)

KNOWN_FAKE_DOMAINS = frozenset([
    "test.com", "example.com", "fake.com", "dummy.com", "sample.com",
    "temp.com", "temporary.com", "fakeemail.com", "notreal.com",
    "mailinator.com", "guerrillamail.com", "throwaway.email",
    "10minutemail.com", "tempmail.com", "disposable.com",
])

REASON_BLOCKLISTED = "Known fake or disposable domain"
REASON_VALID = "Valid domain"
REASON_NO_DNS = "No DNS records found for domain"

_DOMAIN_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9-]{2,63}$")


class InvalidDomainError(ValueError):
    """Raised when the submitted domain is not a syntactically valid hostname."""


def normalize_domain(domain: str) -> str:
    return domain.strip().lower()


class DnsResolver:
    """
    Resolver backed by a DNS-over-HTTPS JSON API (Google Public DNS by default).
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url or settings.dns_resolver_url
        self.timeout = timeout if timeout is not None else settings.dns_timeout_seconds

    async def has_records(self, domain: str, record_type: str) -> bool:
        """
        Return True if the domain has at least one record of record_type.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx answer
            ValueError: If the body is not a JSON object
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(self.base_url, params={"name": domain, "type": record_type})
            response.raise_for_status()
            data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected DNS answer for {domain} ({record_type}): {type(data).__name__}")
        return data.get("Status") == 0 and bool(data.get("Answer"))


class DomainVerificationService:
    """
    Service class for sign-up email domain checks.
    Lookup failures count as invalid (fail-closed).
    """

    def __init__(self, resolver: Optional[DnsResolver] = None):
        self.resolver = resolver or DnsResolver()

    async def check_dns_records(self, domain: str) -> bool:
        """MX lookup first, then A; any lookup error means no records."""
        try:
            if await self.resolver.has_records(domain, "MX"):
                return True
            return await self.resolver.has_records(domain, "A")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"DNS lookup failed for {domain}: {e}")
            return False

    async def verify(self, domain: str) -> DomainVerificationResult:
        """
        Verify an email domain.

        Args:
            domain: Domain part of the candidate email address

        Returns:
            DomainVerificationResult with is_valid and a human-readable reason

        Raises:
            InvalidDomainError: If the domain is not a valid hostname
        """
        normalized = normalize_domain(domain)
        if not _DOMAIN_PATTERN.match(normalized):
            raise InvalidDomainError(f"Invalid domain format: {domain!r}")

        if normalized in KNOWN_FAKE_DOMAINS:
            logger.info(f"Rejected blocklisted domain {normalized}")
            return DomainVerificationResult(is_valid=False, reason=REASON_BLOCKLISTED)

        has_valid_dns = await self.check_dns_records(normalized)
        if not has_valid_dns:
            logger.info(f"No DNS records for domain {normalized}")
        return DomainVerificationResult(
            is_valid=has_valid_dns,
            reason=REASON_VALID if has_valid_dns else REASON_NO_DNS,
        )
