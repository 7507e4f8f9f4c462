import logging
from typing import List

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

DNS_TXT_TYPE = 16


class ChallengeLookupError(Exception):
    pass


def _timeout() -> float:
    return float(getattr(settings, "PIPELINE_VERIFICATION_TIMEOUT_SECONDS", 10))


def dns_record_name(domain: str) -> str:
    return f"{settings.PIPELINE_DNS_RECORD_PREFIX}.{domain}"


def dns_record_value(token: str) -> str:
    return f"{settings.PIPELINE_DNS_VALUE_PREFIX}{token}"


def verification_file_url(domain: str) -> str:
    return f"https://{domain}{settings.PIPELINE_VERIFICATION_FILE_PATH}"


def lookup_dns_txt(domain: str) -> List[str]:
    """Resolve TXT values for the challenge record via DNS-over-HTTPS (JSON API)."""
    name = dns_record_name(domain)
    try:
        response = requests.get(
            settings.PIPELINE_DOH_URL,
            params={"name": name, "type": "TXT"},
            headers={"accept": "application/dns-json"},
            timeout=_timeout(),
        )
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise ChallengeLookupError(f"dns lookup failed for {name}: {exc.__class__.__name__}") from exc
    # Status 3 is NXDOMAIN: the record simply does not exist yet.
    if body.get("Status") not in (0, 3):
        raise ChallengeLookupError(f"dns lookup failed for {name}: rcode {body.get('Status')}")
    values = []
    for answer in body.get("Answer") or []:
        if answer.get("type") != DNS_TXT_TYPE:
            continue
        data = str(answer.get("data") or "")
        # TXT data may arrive split into quoted character-strings.
        chunks = [chunk for chunk in data.split('"') if chunk.strip()]
        values.append("".join(chunks) if chunks else data)
    logger.debug("dns txt lookup name=%s values=%d", name, len(values))
    return values


def fetch_verification_file(domain: str) -> str:
    url = verification_file_url(domain)
    try:
        response = requests.get(url, timeout=_timeout(), allow_redirects=False)
    except requests.RequestException as exc:
        raise ChallengeLookupError(f"fetch failed for {url}: {exc.__class__.__name__}") from exc
    if response.status_code != 200:
        raise ChallengeLookupError(f"fetch failed for {url}: HTTP {response.status_code}")
    return response.text.strip()


def dns_txt_matches(domain: str, token: str) -> bool:
    expected = dns_record_value(token)
    return any(value.strip() == expected for value in lookup_dns_txt(domain))


def file_matches(domain: str, token: str) -> bool:
    return fetch_verification_file(domain) == token
