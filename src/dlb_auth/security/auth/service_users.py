"""Service-user credential store (service-users.xml).

File format:

    <service-users>
        <service-user username="svc-wool" password="..." roles="client"/>
        <service-user username="backup" password="..."/>   (roles default to client)
    </service-users>

The whole file is parsed before anything is published. A single bad record
fails the load, and a failed load leaves the store empty: every lookup then
raises CredentialStoreCorrupt until a later load succeeds.

Thread-safety: the parsed snapshot is swapped under a threading.Lock, so
reload() can run while other threads call find_user().
"""

from __future__ import annotations

__all__ = [
    "ServiceCredential",
    "ServiceUserStore",
    "parse_service_users",
]

import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from dlb_auth.constants import (
    KNOWN_USER_ROLES,
    SERVICE_USER_ELEMENT,
    SERVICE_USERS_ROOT_ELEMENT,
    USER_ROLE_CLIENT,
)
from dlb_auth.exceptions import CredentialStoreCorrupt
from dlb_auth.telemetry.system.system_logger import get_system_logger


@dataclass(frozen=True)
class ServiceCredential:
    """One service user.

    Attributes:
        username: Name as written in the file (trimmed).
        password: Plain password; None for lookups that do not carry it.
        roles: Role names (lower case, de-duplicated, file order).
    """

    username: str
    password: str | None = field(default=None, repr=False)
    roles: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        """Case-insensitive lookup key."""
        return self.username.lower()


@dataclass(frozen=True)
class _Snapshot:
    by_key: Mapping[str, ServiceCredential]
    ordered: tuple[ServiceCredential, ...]


def _parse_roles(raw: str | None, position: int, username: str) -> tuple[str, ...]:
    roles: list[str] = []
    for part in (raw or "").split(","):
        role = part.strip().lower()
        if not role:
            continue
        if role not in KNOWN_USER_ROLES:
            raise CredentialStoreCorrupt(
                f"{SERVICE_USER_ELEMENT} #{position}: attribute 'roles' has unknown role '{role}' "
                f"(expected one of {', '.join(sorted(KNOWN_USER_ROLES))})",
                attribute="roles",
            )
        if role not in roles:
            roles.append(role)
    if not roles:
        get_system_logger().warning(
            {
                "event": "service_user_role_defaulted",
                "username": username,
                "role": USER_ROLE_CLIENT,
            }
        )
        return (USER_ROLE_CLIENT,)
    return tuple(roles)


def _parse_element(element: ET.Element, position: int) -> ServiceCredential:
    if element.tag != SERVICE_USER_ELEMENT:
        raise CredentialStoreCorrupt(
            f"Unexpected element <{element.tag}> at position {position}; "
            f"expected <{SERVICE_USER_ELEMENT}>",
        )

    username = (element.get("username") or "").strip()
    if not username:
        raise CredentialStoreCorrupt(
            f"{SERVICE_USER_ELEMENT} #{position}: attribute 'username' not found or empty",
            attribute="username",
        )

    password = element.get("password")
    if not password:
        raise CredentialStoreCorrupt(
            f"{SERVICE_USER_ELEMENT} '{username}': attribute 'password' not found or empty",
            attribute="password",
        )

    return ServiceCredential(
        username=username,
        password=password,
        roles=_parse_roles(element.get("roles"), position, username),
    )


def parse_service_users(path: Path) -> list[ServiceCredential]:
    """Parse service-users.xml into credentials, in file order.

    Duplicate usernames are returned as-is; the store decides which wins.

    Args:
        path: Path to the XML file.

    Returns:
        Parsed credentials.

    Raises:
        CredentialStoreCorrupt: If the file is missing, unreadable, not
            well-formed, or contains an invalid record.
    """
    try:
        root = ET.parse(path).getroot()
    except FileNotFoundError as e:
        raise CredentialStoreCorrupt(f"Service users file not found: {path}") from e
    except OSError as e:
        raise CredentialStoreCorrupt(f"Cannot read service users file {path}: {e}") from e
    except ET.ParseError as e:
        raise CredentialStoreCorrupt(f"Service users file {path} is not well-formed XML: {e}") from e

    if root.tag != SERVICE_USERS_ROOT_ELEMENT:
        raise CredentialStoreCorrupt(
            f"Expected root element <{SERVICE_USERS_ROOT_ELEMENT}>, found <{root.tag}>",
        )

    return [_parse_element(child, position) for position, child in enumerate(root, start=1)]


class ServiceUserStore:
    """Case-insensitive lookup of service users.

    Loads lazily on the first find_user() unless load() is called first.

    Usage:
        store = ServiceUserStore(Path("/etc/dlb/service-users.xml"))
        store.load()
        credential = store.find_user("svc-wool")
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._snapshot: _Snapshot | None = None
        self._load_error: CredentialStoreCorrupt | None = None
        self._logger = get_system_logger()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def load(self) -> int:
        """Parse the file and publish the result.

        Returns:
            Number of distinct users loaded.

        Raises:
            CredentialStoreCorrupt: If parsing fails. The store is left empty.
        """
        try:
            credentials = parse_service_users(self._path)
        except CredentialStoreCorrupt as e:
            with self._lock:
                self._snapshot = None
                self._load_error = e
            self._logger.error(
                {
                    "event": "service_users_load_failed",
                    "path": str(self._path),
                    "attribute": e.attribute,
                    "error": str(e),
                }
            )
            raise

        by_key: dict[str, ServiceCredential] = {}
        ordered: list[ServiceCredential] = []
        for credential in credentials:
            if credential.key in by_key:
                self._logger.warning(
                    {
                        "event": "service_user_duplicate",
                        "username": credential.username,
                        "path": str(self._path),
                        "message": "Duplicate username ignored; first entry wins",
                    }
                )
                continue
            by_key[credential.key] = credential
            ordered.append(credential)

        snapshot = _Snapshot(by_key=MappingProxyType(by_key), ordered=tuple(ordered))
        with self._lock:
            self._snapshot = snapshot
            self._load_error = None

        self._logger.info(
            {
                "event": "service_users_loaded",
                "path": str(self._path),
                "count": len(ordered),
            }
        )
        return len(ordered)

    def reload(self) -> int:
        """Re-read the file. Same contract as load()."""
        return self.load()

    def _current(self) -> _Snapshot:
        with self._lock:
            snapshot = self._snapshot
            error = self._load_error
        if snapshot is not None:
            return snapshot
        if error is not None:
            # A failed load stays failed until an explicit reload succeeds
            raise CredentialStoreCorrupt(str(error), attribute=error.attribute)
        self.load()
        with self._lock:
            assert self._snapshot is not None
            return self._snapshot

    def find_user(self, username: str) -> ServiceCredential | None:
        """Look up a user by name, ignoring case.

        Raises:
            CredentialStoreCorrupt: If the file could not be loaded.
        """
        return self._current().by_key.get(username.strip().lower())

    def users(self) -> tuple[ServiceCredential, ...]:
        """All loaded users in file order."""
        return self._current().ordered
