"""Container identity: the runtime-safe name shared by a container and its volume."""

from __future__ import annotations

import re
from dataclasses import dataclass

UNKNOWN_USER = "unknown"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.-]")


def extract_user_id(email: str) -> str:
    """Return the local part of *email* (everything before the first ``@``).

    An address without ``@`` is used whole. An empty local part
    (``"@example.com"``) falls back to ``UNKNOWN_USER``.
    """
    local, _, _ = email.partition("@")
    return local or UNKNOWN_USER


def sanitize(value: str) -> str:
    """Strip every character the container runtime won't accept in a name."""
    return _UNSAFE_CHARS.sub("", value)


@dataclass(frozen=True)
class ContainerIdentity:
    server_name: str
    user_id: str

    @property
    def name(self) -> str:
        return sanitize(f"{self.server_name}-{self.user_id}")

    def __str__(self) -> str:
        return self.name


def resolve(server_name: str, user_email: str) -> ContainerIdentity:
    """Derive the container identity for a (server name, owner email) pair.

    Distinct inputs that sanitize to the same string share an identity.
    """
    if not server_name or not user_email:
        raise ValueError("server_name and user_email must be non-empty")
    return ContainerIdentity(server_name=server_name, user_id=extract_user_id(user_email))
