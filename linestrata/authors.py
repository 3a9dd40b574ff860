"""
Contributor identity normalization.

A contributor key is the author's normalized email address, so the same person
committing under several display names is counted once.
"""

import re
from functools import lru_cache
from typing import Dict, Mapping, Optional


class AuthorNormalizer:
    """
    Normalize author information for consistent identification and analysis.

    Aliases map an email address or a display name (case-insensitive) to the
    canonical email used as the contributor key, similar to a git mailmap.
    """

    def __init__(self, aliases: Optional[Mapping[str, str]] = None):
        self.aliases = {
            key.strip().lower(): value.strip().lower()
            for key, value in (aliases or {}).items()
        }
        self._cached = lru_cache(maxsize=1000)(self._normalize)

    def normalize(self, author_name: str, author_email: str) -> Dict[str, str]:
        """
        Generate normalized author information.

        Args:
            author_name: Author's name from git
            author_email: Author's email from git

        Returns:
            Dict with contributor_key, display_name and author_domain
        """
        return self._cached(author_name, author_email)

    def cache_info(self):
        return self._cached.cache_info()

    def _normalize(self, author_name: str, author_email: str) -> Dict[str, str]:
        name = (author_name or "").strip()
        email = (author_email or "").strip().lower()

        alias = self.aliases.get(email) or self.aliases.get(name.lower())
        if alias:
            email = alias

        if "@" in email:
            local, _, domain = email.partition("@")
            # gmail-style + tags
            local = local.split("+")[0]
            key = f"{local}@{domain}"
        else:
            domain = ""
            key = email

        if not key:
            name_part = name.lower().replace(" ", "_").replace(".", "_")
            key = re.sub(r"[^a-z0-9_]", "", name_part) or "unknown"

        return {
            "contributor_key": key,
            "display_name": name or key,
            "author_domain": domain,
        }

    def contributor_key(self, author_name: str, author_email: str) -> str:
        return self.normalize(author_name, author_email)["contributor_key"]
