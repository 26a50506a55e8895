"""Tests for the service-user credential store.

Tests cover:
- Parsing service-users.xml (attributes, roles, trimming)
- Case-insensitive lookup
- Fail-closed loading of corrupt files
- Reload and duplicate handling
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from dlb_auth.exceptions import CredentialStoreCorrupt
from dlb_auth.security.auth.service_users import ServiceUserStore, parse_service_users


def _write(tmp_path: Path, body: str, name: str = "service-users.xml") -> Path:
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return path


# ============================================================================
# Tests: Parsing
# ============================================================================


class TestParseServiceUsers:
    """Tests for parse_service_users."""

    def test_parses_users_in_file_order(self, service_users_file: Path):
        """Given a valid file, returns all users in order with roles."""
        # Act
        credentials = parse_service_users(service_users_file)

        # Assert
        assert [c.username for c in credentials] == ["svc-wool", "Alice", "admin"]
        assert credentials[0].password == "wool-secret"
        assert credentials[1].roles == ("editor", "client")
        assert credentials[2].roles == ("admin",)

    def test_username_is_trimmed(self, tmp_path: Path):
        """Given whitespace around a username, it is stripped."""
        # Arrange
        path = _write(
            tmp_path,
            '<service-users><service-user username="  svc-a  " password="p"/></service-users>',
        )

        # Act
        credentials = parse_service_users(path)

        # Assert
        assert credentials[0].username == "svc-a"

    def test_missing_roles_attribute_defaults_to_client(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        """Given no roles attribute, the user gets the client role with a warning."""
        # Arrange
        path = _write(tmp_path, '<service-users><service-user username="a" password="p"/></service-users>')

        # Act
        with caplog.at_level(logging.WARNING):
            credentials = parse_service_users(path)

        # Assert
        assert credentials[0].roles == ("client",)
        assert any(
            isinstance(r.msg, dict) and r.msg.get("event") == "service_user_role_defaulted" and r.msg["username"] == "a"
            for r in caplog.records
        )

    @pytest.mark.parametrize("roles", ["", " , ,"])
    def test_empty_roles_attribute_defaults_to_client(self, tmp_path: Path, roles: str):
        """Given a roles attribute naming no role, the user gets the client role."""
        # Arrange
        path = _write(
            tmp_path,
            f'<service-users><service-user username="a" password="p" roles="{roles}"/></service-users>',
        )

        # Act
        credentials = parse_service_users(path)

        # Assert
        assert credentials[0].roles == ("client",)

    def test_unknown_role_message_names_attribute(self, tmp_path: Path):
        """Given an unknown role, the error text names the roles attribute and the role."""
        # Arrange
        path = _write(
            tmp_path,
            '<service-users><service-user username="a" password="p" roles="client,root"/></service-users>',
        )

        # Act & Assert
        with pytest.raises(CredentialStoreCorrupt, match="attribute 'roles' has unknown role 'root'"):
            parse_service_users(path)

    def test_roles_are_normalized_and_deduplicated(self, tmp_path: Path):
        """Given mixed-case repeated roles, they are lower-cased once each."""
        # Arrange
        path = _write(
            tmp_path,
            '<service-users><service-user username="a" password="p" roles="Admin, client,ADMIN,"/></service-users>',
        )

        # Act
        credentials = parse_service_users(path)

        # Assert
        assert credentials[0].roles == ("admin", "client")

    def test_password_not_in_repr(self, service_users_file: Path):
        """Given a parsed credential, repr does not reveal the password."""
        # Act
        credential = parse_service_users(service_users_file)[0]

        # Assert
        assert "wool-secret" not in repr(credential)

    @pytest.mark.parametrize(
        "body,attribute",
        [
            ('<service-users><service-user username="a" password=""/></service-users>', "password"),
            ('<service-users><service-user username="a"/></service-users>', "password"),
            ('<service-users><service-user username="   " password="p"/></service-users>', "username"),
            ('<service-users><service-user password="p"/></service-users>', "username"),
            ('<service-users><service-user username="a" password="p" roles="root"/></service-users>', "roles"),
        ],
    )
    def test_invalid_attribute_fails_whole_file(self, tmp_path: Path, body: str, attribute: str):
        """Given one invalid attribute, the whole file is rejected naming it."""
        # Arrange
        path = _write(tmp_path, body)

        # Act & Assert
        with pytest.raises(CredentialStoreCorrupt) as exc_info:
            parse_service_users(path)
        assert exc_info.value.attribute == attribute
        assert attribute in str(exc_info.value)

    @pytest.mark.parametrize(
        "body",
        [
            '<users><service-user username="a" password="p"/></users>',
            '<service-users><user username="a" password="p"/></service-users>',
            "<service-users><service-user username='a' password='p'>",
            "",
        ],
    )
    def test_structural_errors_fail(self, tmp_path: Path, body: str):
        """Given a wrong root, wrong child or malformed XML, loading fails."""
        # Arrange
        path = _write(tmp_path, body)

        # Act & Assert
        with pytest.raises(CredentialStoreCorrupt):
            parse_service_users(path)

    def test_missing_file_fails(self, tmp_path: Path):
        """Given no file, raises CredentialStoreCorrupt."""
        # Act & Assert
        with pytest.raises(CredentialStoreCorrupt, match="not found"):
            parse_service_users(tmp_path / "absent.xml")


# ============================================================================
# Tests: ServiceUserStore
# ============================================================================


class TestServiceUserStore:
    """Tests for ServiceUserStore lookup and loading."""

    def test_lookup_is_case_insensitive(self, service_users_file: Path):
        """Given user "Alice", lookups for "Alice" and "alice" return the same record."""
        # Arrange
        store = ServiceUserStore(service_users_file)

        # Act
        upper = store.find_user("Alice")
        lower = store.find_user("alice")

        # Assert
        assert upper is not None
        assert upper == lower
        assert upper.username == "Alice"

    def test_unknown_user_returns_none(self, service_users_file: Path):
        """Given an unknown name, find_user returns None."""
        # Arrange
        store = ServiceUserStore(service_users_file)

        # Act & Assert
        assert store.find_user("mallory") is None

    def test_loads_lazily_on_first_lookup(self, service_users_file: Path):
        """Given a new store, nothing is loaded until the first lookup."""
        # Arrange
        store = ServiceUserStore(service_users_file)
        assert not store.is_loaded

        # Act
        store.find_user("svc-wool")

        # Assert
        assert store.is_loaded

    def test_failed_load_leaves_store_empty(self, tmp_path: Path):
        """Given a file with an empty password, every lookup fails (no partial data)."""
        # Arrange
        path = _write(
            tmp_path,
            '<service-users><service-user username="good" password="p"/>'
            '<service-user username="bad" password=""/></service-users>',
        )
        store = ServiceUserStore(path)

        # Act
        with pytest.raises(CredentialStoreCorrupt):
            store.load()

        # Assert
        with pytest.raises(CredentialStoreCorrupt):
            store.find_user("good")
        assert not store.is_loaded

    def test_corrupt_reload_discards_previous_users(self, service_users_file: Path):
        """Given a good load followed by a corrupt reload, the old users are gone."""
        # Arrange
        store = ServiceUserStore(service_users_file)
        store.load()
        service_users_file.write_text("<service-users><oops/></service-users>", encoding="utf-8")

        # Act
        with pytest.raises(CredentialStoreCorrupt):
            store.reload()

        # Assert
        with pytest.raises(CredentialStoreCorrupt):
            store.find_user("svc-wool")

    def test_reload_recovers_after_fix(self, tmp_path: Path):
        """Given a corrupt file that is then fixed, reload makes users available again."""
        # Arrange
        path = _write(tmp_path, "<service-users><service-user username='a'/></service-users>")
        store = ServiceUserStore(path)
        with pytest.raises(CredentialStoreCorrupt):
            store.load()
        path.write_text("<service-users><service-user username='a' password='p'/></service-users>")

        # Act
        count = store.reload()

        # Assert
        assert count == 1
        assert store.find_user("A") is not None

    def test_duplicate_username_first_wins(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        """Given two entries differing only by case, the first is kept with a warning."""
        # Arrange
        path = _write(
            tmp_path,
            '<service-users><service-user username="svc" password="first"/>'
            '<service-user username="SVC" password="second"/></service-users>',
        )
        store = ServiceUserStore(path)

        # Act
        with caplog.at_level(logging.WARNING):
            count = store.load()

        # Assert
        assert count == 1
        credential = store.find_user("svc")
        assert credential is not None and credential.password == "first"
        assert any(
            isinstance(r.msg, dict) and r.msg.get("event") == "service_user_duplicate" for r in caplog.records
        )

    def test_users_lists_in_file_order(self, service_users_file: Path):
        """Given a loaded file, users() keeps file order."""
        # Arrange
        store = ServiceUserStore(service_users_file)

        # Act
        names = [c.username for c in store.users()]

        # Assert
        assert names == ["svc-wool", "Alice", "admin"]

    def test_concurrent_reload_never_exposes_partial_state(self, service_users_file: Path):
        """Given reloads racing lookups, every lookup sees a complete user set."""
        # Arrange
        store = ServiceUserStore(service_users_file)
        store.load()
        errors: list[str] = []

        def reader() -> None:
            for _ in range(200):
                if len(store.users()) != 3:
                    errors.append("partial")

        def reloader() -> None:
            for _ in range(50):
                store.reload()

        threads = [threading.Thread(target=reader) for _ in range(4)] + [threading.Thread(target=reloader)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert errors == []
