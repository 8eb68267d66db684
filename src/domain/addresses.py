"""
Address rules shared by every flow.

Normalisation (strip + lowercase) is applied before any key lookup so that
"User@Org.com " and "user@org.com" address the same challenge and account.
"""

import re

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Consumer mail providers, matched as fragments of the domain part.
DEFAULT_PERSONAL_EMAIL_PROVIDERS: tuple[str, ...] = (
    "gmail.com",
    "googlemail.com",
    "yahoo.",
    "hotmail.",
    "icloud.com",
    "outlook.",
    "live.",
    "msn.",
    "tutamail.",
    "tutanota.",
    "tuta.",
    "aol.",
    "protonmail.",
    "mail.com",
    "zoho.",
)


def normalize_address(address: str) -> str:
    return address.strip().lower()


def is_valid_address(address: str) -> bool:
    """Syntactic check only; deliverability is the notification channel's call."""
    return bool(_EMAIL_PATTERN.match(address))


def is_personal_address(
    address: str, providers: tuple[str, ...] = DEFAULT_PERSONAL_EMAIL_PROVIDERS
) -> bool:
    """True if the address belongs to a consumer mail provider."""
    _, _, domain = normalize_address(address).rpartition("@")
    return any(provider in domain for provider in providers)


# Providers accepted for signup, matched exactly against the domain part.
DEFAULT_SIGNUP_EMAIL_DOMAINS: tuple[str, ...] = (
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "yahoo.co.uk",
    "yahoo.fr",
    "yahoo.de",
    "yahoo.es",
    "yahoo.it",
    "yahoo.ca",
    "yahoo.com.au",
    "yahoo.co.in",
    "yahoo.co.jp",
    "ymail.com",
    "rocketmail.com",
    "hotmail.com",
    "hotmail.co.uk",
    "hotmail.fr",
    "hotmail.de",
    "hotmail.es",
    "hotmail.it",
    "outlook.com",
    "outlook.co.uk",
    "live.com",
    "live.co.uk",
    "msn.com",
    "icloud.com",
    "me.com",
    "mac.com",
    "aol.com",
    "protonmail.com",
    "proton.me",
    "zoho.com",
    "mail.com",
    "gmx.com",
    "gmx.de",
    "gmx.net",
    "yandex.com",
    "yandex.ru",
    "fastmail.com",
    "tutanota.com",
    "inbox.com",
)


def is_allowed_signup_address(
    address: str, domains: tuple[str, ...] = DEFAULT_SIGNUP_EMAIL_DOMAINS
) -> bool:
    """
    True if the address may open an account.

    Accounts are created from a personal mailbox; the domain must equal one
    of the allowed providers (subdomains do not count). An empty allowlist
    accepts any domain.
    """
    if not domains:
        return True
    _, _, domain = normalize_address(address).rpartition("@")
    return domain in {d.strip().lower() for d in domains}
