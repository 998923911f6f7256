"""ABOUTME: Integration tests for CLI commands using real database
ABOUTME: Tests user creation and IP administration through the CLI against in-memory SQLite"""

import pytest
from click.testing import CliRunner

from storeguard.domain.value_objects import AuditAction, GlobalRole
from storeguard.entrypoints.cli import cli
from storeguard.service_layer.unit_of_work import SqlAlchemyUnitOfWork


@pytest.fixture
def cli_with_session_factory(sqlite_session_factory):
    """Click runner with the test session factory in the context."""

    def _invoke_cli_with_context(args, input=None):
        runner = CliRunner()
        return runner.invoke(cli, args, obj={"session_factory": sqlite_session_factory}, input=input)

    return _invoke_cli_with_context


class TestCliUsersIntegration:
    def test_add_first_admin(self, sqlite_session_factory, cli_with_session_factory):
        result = cli_with_session_factory(
            ["users", "add", "--email", "Admin@Example.com", "--role", "admin", "--password", "pass123dfsaio"]
        )

        assert result.exit_code == 0
        assert "✓ User created successfully:" in result.output

        with SqlAlchemyUnitOfWork(sqlite_session_factory) as uow:
            user = uow.users.get_by_email("admin@example.com")
            assert user is not None
            assert user.global_role == GlobalRole.ADMIN

    def test_duplicate_user(self, cli_with_session_factory):
        args = ["users", "add", "--email", "admin@example.com", "--password", "pass123dfsaio"]
        cli_with_session_factory(args)

        result = cli_with_session_factory(args)

        assert result.exit_code == 1
        assert "already exists" in result.output


class TestCliSecurityIntegration:
    def test_block_list_unblock(self, sqlite_session_factory, cli_with_session_factory):
        result = cli_with_session_factory(["security", "block-ip", "10.0.0.1", "--reason", "card testing"])
        assert result.exit_code == 0

        result = cli_with_session_factory(["security", "list-blocked"])
        assert "10.0.0.1" in result.output
        assert "card testing" in result.output

        result = cli_with_session_factory(["security", "unblock-ip", "10.0.0.1"])
        assert "✓ Unblocked 10.0.0.1" in result.output

        result = cli_with_session_factory(["security", "list-blocked"])
        assert "No blocked IP addresses." in result.output

        with SqlAlchemyUnitOfWork(sqlite_session_factory) as uow:
            actions = [entry.action for entry in uow.audit_log.all()]
        assert AuditAction.BLOCKED_IP in actions
        assert AuditAction.UNBLOCKED_IP in actions

    def test_whitelist(self, cli_with_session_factory):
        cli_with_session_factory(["security", "whitelist-ip", "192.168.1.10", "--description", "office"])

        result = cli_with_session_factory(["security", "list-whitelisted"])

        assert "192.168.1.10" in result.output
        assert "office" in result.output

    def test_block_invalid_address(self, cli_with_session_factory):
        result = cli_with_session_factory(["security", "block-ip", "999.1.1.1", "--reason", "typo"])

        assert result.exit_code == 1
        assert "✗ Error blocking IP" in result.output

    def test_summary_counts_blocks(self, cli_with_session_factory):
        cli_with_session_factory(["security", "block-ip", "10.0.0.1", "--reason", "fraud", "--hours", "2"])

        result = cli_with_session_factory(["security", "summary", "--days", "1"])

        assert result.exit_code == 0
        assert "Blocked IPs (now):       1" in result.output
        assert "High risk events:        1" in result.output

    def test_sweep_with_nothing_expired(self, cli_with_session_factory):
        result = cli_with_session_factory(["security", "sweep"])

        assert result.exit_code == 0
        assert "✓ Deactivated 0 expired blocks" in result.output
