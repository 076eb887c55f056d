"""Tests for the amibackup CLI commands."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from amibackup.cli.main import app, format_age
from amibackup.errors import CredentialValidationError
from amibackup.models.purge_operation import OperationMode, PurgeOperation
from amibackup.models.purge_record import PurgeRecord, PurgeStatus, ResourceKind
from amibackup.retention.audit import AuditStorage
from tests.fixtures.images import NOW, FakeResourceAPI, image_data

IDENTITY = {"account_id": "123456789012", "arn": "arn:aws:iam::123456789012:user/backup", "user_id": "AIDA"}


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a fast-polling config file."""
    path = tmp_path / "config.yaml"
    path.write_text("poll_interval: 0.01\ntimeout: 5\n")
    monkeypatch.setenv("AMIBACKUP_CONFIG", str(path))
    monkeypatch.delenv("AMIBACKUP_LOG_LEVEL", raising=False)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.setattr("amibackup.cli.main.console.width", 200)
    return path


@pytest.fixture
def fake_api():
    """Replace the boto3-backed API and credential check."""
    api = FakeResourceAPI()
    with patch("amibackup.cli.main.Ec2ResourceAPI", return_value=api), patch(
        "amibackup.cli.main.validate_credentials", return_value=IDENTITY
    ):
        yield api


class TestFormatAge:
    """Relative age rendering."""

    NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(seconds=5), "just now"),
            (timedelta(minutes=1), "1 minute ago"),
            (timedelta(hours=5), "5 hours ago"),
            (timedelta(days=1, hours=3), "1 day ago"),
            (timedelta(days=30), "30 days ago"),
            (timedelta(seconds=-10), "in the future"),
        ],
    )
    def test_ages(self, delta: timedelta, expected: str) -> None:
        """Test ages use the largest whole unit."""
        assert format_age(self.NOW - delta, self.NOW) == expected

    def test_missing(self) -> None:
        """Test a missing timestamp renders as a dash."""
        assert format_age(None, self.NOW) == "-"


class TestBackupCommand:
    """Test suite for ``amibackup backup``."""

    def test_nagios_ok(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test a successful run prints an OK status line and exits 0."""
        fake_api.add_instance("us-east-1", "i-1", "web")

        result = runner.invoke(app, ["backup", "web", "--nagios"])

        assert result.exit_code == 0
        assert "AMIbackup OK: Created new AMI ami-00000001 (copy ami-00000002)" in result.stdout

    def test_nagios_no_instances(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test a run without matching instances is critical."""
        result = runner.invoke(app, ["backup", "web", "-n"])

        assert result.exit_code == 2
        assert "AMIbackup CRITICAL: No instances with matching name tag: web" in result.stdout

    def test_prune_only_dry_run(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test a dry-run prune deletes nothing and creates nothing."""
        now = datetime.now(timezone.utc)
        fake_api.add_backup("us-east-1", "ami-a", now - timedelta(days=3, hours=2))
        fake_api.add_backup("us-east-1", "ami-b", now - timedelta(days=3, hours=1))

        result = runner.invoke(
            app, ["backup", "web", "-s", "us-east-1", "-d", "us-east-1", "-p", "1d:1d:7d", "-o", "--dry-run"]
        )

        assert result.exit_code == 0
        assert fake_api.mutating_calls() == []
        assert fake_api.image_ids("us-east-1") == ["ami-a", "ami-b"]

    def test_prune_deletes(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test pruning removes the newer AMI in a slice."""
        now = datetime.now(timezone.utc)
        fake_api.add_backup("us-east-1", "ami-a", now - timedelta(days=3, hours=2))
        fake_api.add_backup("us-east-1", "ami-b", now - timedelta(days=3, hours=1))

        result = runner.invoke(app, ["backup", "web", "-d", "us-east-1", "-p", "1d:1d:7d", "-o", "-n"])

        assert result.exit_code == 0
        assert "AMIbackup OK: Pruned 1 old AMIs in us-east-1" in result.stdout

    def test_prune_only_nothing_to_prune(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test a prune-only run with nothing to delete prints a non-empty OK line."""
        result = runner.invoke(app, ["backup", "web", "-p", "1d:1d:7d", "-o", "-n"])

        assert result.exit_code == 0
        assert "AMIbackup OK: Pruning done and --prune-only specified" in result.stdout

    @pytest.mark.parametrize(
        "args",
        [
            ["-p", "1d:7d"],
            ["-s", "us-nowhere-1"],
            ["-t", "0"],
            ["--kms-key-id", "alias/backup"],
        ],
    )
    def test_invalid_options(self, runner: CliRunner, fake_api: FakeResourceAPI, args) -> None:
        """Test invalid options exit 2 before any remote call."""
        result = runner.invoke(app, ["backup", "web", "-n", *args])

        assert result.exit_code == 2
        assert "AMIbackup CRITICAL:" in result.stdout
        assert fake_api.calls == []

    def test_bad_credentials(self, runner: CliRunner) -> None:
        """Test credential failures exit 2."""
        with patch(
            "amibackup.cli.main.validate_credentials",
            side_effect=CredentialValidationError("No AWS credentials found."),
        ):
            result = runner.invoke(app, ["backup", "web", "-n"])

        assert result.exit_code == 2
        assert "AMIbackup CRITICAL: No AWS credentials found." in result.stdout

    def test_audit_dir(self, runner: CliRunner, fake_api: FakeResourceAPI, tmp_path: Path) -> None:
        """Test purge audit logs are written when an audit directory is given."""
        audit_dir = tmp_path / "audit"

        result = runner.invoke(app, ["backup", "web", "-p", "1d:1d:7d", "-o", "--audit-dir", str(audit_dir)])

        assert result.exit_code == 0
        assert len(list(audit_dir.glob("*/*/operation-*.yaml"))) == 2

    def test_invalid_config_file(self, runner: CliRunner, isolated_config: Path) -> None:
        """Test an unreadable config file exits 2."""
        isolated_config.write_text("timeout: [unclosed\n")

        result = runner.invoke(app, ["backup", "web"])

        assert result.exit_code == 2


class TestInventoryCommand:
    """Test suite for ``amibackup inventory``."""

    def test_lists_both_regions(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test managed AMIs are listed per region."""
        now = datetime.now(timezone.utc)
        fake_api.add_backup("us-east-1", "ami-src", now - timedelta(days=1))
        fake_api.add_image(
            "us-west-1", image_data("ami-dst", timestamp=now - timedelta(days=1), extra_tags={"sourceregion": "us-east-1"})
        )

        result = runner.invoke(app, ["inventory", "web"])

        assert result.exit_code == 0
        assert "ami-src" in result.stdout
        assert "ami-dst" in result.stdout
        assert [c[1] for c in fake_api.calls_to("list_images")] == ["us-east-1", "us-west-1"]

    def test_bad_region(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test unknown regions are rejected."""
        result = runner.invoke(app, ["inventory", "web", "-d", "mars-1"])

        assert result.exit_code == 2
        assert fake_api.calls == []


class TestCleanupCommand:
    """Test suite for ``amibackup cleanup``."""

    def test_deletes_matching(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test matching AMIs are deregistered."""
        fake_api.add_image("us-east-1", image_data("ami-1", name="web-2019-01-01_00-00-00-i-1"))
        fake_api.add_image("us-east-1", image_data("ami-2", name="db-2019-01-01_00-00-00-i-2"))

        result = runner.invoke(app, ["cleanup", "^web-2019", "-r", "us-east-1"])

        assert result.exit_code == 0
        assert fake_api.image_ids("us-east-1") == ["ami-2"]

    def test_dry_run(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test a dry run deletes nothing."""
        fake_api.add_image("us-east-1", image_data("ami-1", name="web-old"))

        result = runner.invoke(app, ["cleanup", "web", "--dry-run"])

        assert result.exit_code == 0
        assert fake_api.mutating_calls() == []

    def test_invalid_pattern(self, runner: CliRunner, fake_api: FakeResourceAPI) -> None:
        """Test a malformed regular expression exits 2."""
        result = runner.invoke(app, ["cleanup", "web-(", "-r", "us-east-1"])

        assert result.exit_code == 2
        assert fake_api.calls == []


class TestAuditCommand:
    """Test suite for ``amibackup audit``."""

    @pytest.fixture
    def audit_dir(self, tmp_path: Path) -> Path:
        """Audit directory holding one partially failed purge in us-east-1."""
        operation = PurgeOperation(
            operation_id="op_test",
            region="us-east-1",
            timestamp=NOW,
            mode=OperationMode.EXECUTE,
            images_total=2,
            kept_images=["ami-0a01"],
            name="web",
        )
        operation.records = [
            PurgeRecord("rec_1", "op_test", "ami-0a02", ResourceKind.IMAGE, "us-east-1", NOW, PurgeStatus.SUCCEEDED),
            PurgeRecord(
                "rec_2",
                "op_test",
                "snap-0a02",
                ResourceKind.SNAPSHOT,
                "us-east-1",
                NOW,
                PurgeStatus.SUCCEEDED,
                parent_image_id="ami-0a02",
            ),
            PurgeRecord(
                "rec_3",
                "op_test",
                "ami-0a03",
                ResourceKind.IMAGE,
                "us-east-1",
                NOW,
                PurgeStatus.FAILED,
                error_code="AuthFailure",
            ),
        ]
        operation.finalize(NOW)
        AuditStorage(str(tmp_path)).log_operation(operation)
        return tmp_path

    def test_lists_operations(self, runner: CliRunner, audit_dir: Path) -> None:
        """Test stored operations are listed with their counts."""
        result = runner.invoke(app, ["audit", "--audit-dir", str(audit_dir)])

        assert result.exit_code == 0
        assert "op_test" in result.stdout
        assert "partial" in result.stdout
        assert "Total operations: 1" in result.stdout

    def test_shows_records(self, runner: CliRunner, audit_dir: Path) -> None:
        """Test one operation is shown with every record."""
        result = runner.invoke(app, ["audit", "op_test", "--audit-dir", str(audit_dir)])

        assert result.exit_code == 0
        assert "Kept: ami-0a01" in result.stdout
        assert "snap-0a02" in result.stdout
        assert "AuthFailure" in result.stdout

    def test_unknown_operation(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test an unknown operation id exits 2."""
        result = runner.invoke(app, ["audit", "op_missing", "--audit-dir", str(tmp_path)])

        assert result.exit_code == 2
        assert "op_missing" in result.stdout

    def test_empty(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test an empty audit directory is reported."""
        result = runner.invoke(app, ["audit", "--audit-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "No purge operations recorded." in result.stdout

    def test_reads_backup_logs(self, runner: CliRunner, fake_api: FakeResourceAPI, tmp_path: Path) -> None:
        """Test logs written by a prune run are listed."""
        runner.invoke(app, ["backup", "web", "-p", "1d:1d:7d", "-o", "--audit-dir", str(tmp_path)])

        result = runner.invoke(app, ["audit", "--audit-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "Total operations: 2" in result.stdout


class TestVersionCommand:
    """Test suite for ``amibackup version``."""

    def test_version(self, runner: CliRunner) -> None:
        """Test the version is printed."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "amibackup version 0.6.0" in result.stdout
