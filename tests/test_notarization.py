"""Tests for Notarizer and artifact lookup."""

from unittest.mock import MagicMock, patch

import pytest

from nativepack import (
    XCRUN,
    ConfigurationError,
    ExternalToolError,
    FileError,
    Notarizer,
    OutputParseError,
    TargetFormat,
    ToolInvoker,
    find_output_file_or_dir,
)

SUBMIT_OUTPUT = b"""No errors uploading 'MyApp-1.0.0.dmg'.
RequestUUID = 2a1b3c4d-0000-1111-2222-abcdef012345
"""


def tool_output(stdout: bytes, returncode: int = 0):
    """Fake subprocess.run writing stdout into the captured log."""

    def run(command, **kwargs):
        if kwargs.get("stdout") is not None:
            kwargs["stdout"].write(stdout)
        return MagicMock(returncode=returncode)

    return run


@pytest.fixture
def logs_dir(tmp_path):
    return tmp_path / "logs"


@pytest.fixture
def notarizer(logs_dir):
    return Notarizer(
        ToolInvoker(logs_dir),
        bundle_id="com.example.app",
        apple_id="john@example.com",
        password="@keychain:AC_PASSWORD",
    )


@pytest.fixture
def dmg_dir(tmp_path):
    out = tmp_path / "binaries" / "dmg"
    out.mkdir(parents=True)
    (out / "MyApp-1.0.0.dmg").write_bytes(b"dmg")
    return out


class TestNotarizerSettings:
    """Tests for credential resolution and validation."""

    def test_env_fallback(self, logs_dir, monkeypatch):
        monkeypatch.setenv("NOTARIZATION_APPLE_ID", "jane@example.com")
        monkeypatch.setenv("NOTARIZATION_PASSWORD", "secret")
        notarizer = Notarizer(ToolInvoker(logs_dir), bundle_id="com.example.app")
        assert notarizer.apple_id == "jane@example.com"
        assert notarizer.password == "secret"

    def test_param_overrides_env(self, logs_dir, monkeypatch):
        monkeypatch.setenv("NOTARIZATION_APPLE_ID", "jane@example.com")
        notarizer = Notarizer(ToolInvoker(logs_dir), apple_id="john@example.com")
        assert notarizer.apple_id == "john@example.com"

    def test_missing_apple_id(self, logs_dir, monkeypatch):
        monkeypatch.delenv("NOTARIZATION_APPLE_ID", raising=False)
        notarizer = Notarizer(
            ToolInvoker(logs_dir), bundle_id="com.example.app", password="p"
        )
        with pytest.raises(ConfigurationError, match="Apple ID"):
            notarizer.validate()

    def test_missing_password(self, logs_dir, monkeypatch):
        monkeypatch.delenv("NOTARIZATION_PASSWORD", raising=False)
        notarizer = Notarizer(
            ToolInvoker(logs_dir), bundle_id="com.example.app", apple_id="a@b.c"
        )
        with pytest.raises(ConfigurationError, match="Password"):
            notarizer.validate()

    def test_invalid_bundle_id(self, logs_dir):
        notarizer = Notarizer(
            ToolInvoker(logs_dir), bundle_id="bad id", apple_id="a", password="p"
        )
        with pytest.raises(ConfigurationError):
            notarizer.validate()


class TestSubmit:
    """Tests for Notarizer.submit()."""

    @patch("subprocess.run")
    def test_app_image_rejected(self, mock_run, notarizer, tmp_path):
        """App images are refused before any tool runs."""
        with pytest.raises(ConfigurationError, match="cannot be notarized"):
            notarizer.submit(
                TargetFormat.APP_IMAGE, tmp_path, tmp_path / "request-id.txt"
            )
        mock_run.assert_not_called()

    @patch("subprocess.run")
    def test_request_id_persisted(self, mock_run, notarizer, dmg_dir, tmp_path, logs_dir):
        mock_run.side_effect = tool_output(SUBMIT_OUTPUT)
        request_file = tmp_path / "notarization" / "request-id.txt"

        request_id = notarizer.submit(TargetFormat.DMG, dmg_dir, request_file)

        assert request_id == "2a1b3c4d-0000-1111-2222-abcdef012345"
        assert request_file.read_text() == request_id
        assert list(logs_dir.iterdir()) == []

    @patch("subprocess.run")
    def test_upload_command(self, mock_run, notarizer, dmg_dir, tmp_path):
        mock_run.side_effect = tool_output(SUBMIT_OUTPUT)
        notarizer.submit(TargetFormat.DMG, dmg_dir, tmp_path / "request-id.txt")

        command = mock_run.call_args.args[0]
        assert command == [
            XCRUN,
            "altool",
            "--notarize-app",
            "--primary-bundle-id",
            "com.example.app",
            "--username",
            "john@example.com",
            "--password",
            "@keychain:AC_PASSWORD",
            "--file",
            str((dmg_dir / "MyApp-1.0.0.dmg").absolute()),
        ]

    @patch("subprocess.run")
    def test_missing_request_uuid(self, mock_run, notarizer, dmg_dir, tmp_path, logs_dir):
        """Output without a request id fails and keeps the stdout log."""
        mock_run.side_effect = tool_output(b"Upload finished\n")
        request_file = tmp_path / "request-id.txt"

        with pytest.raises(OutputParseError, match="RequestUUID"):
            notarizer.submit(TargetFormat.DMG, dmg_dir, request_file)

        assert not request_file.exists()
        out_logs = list(logs_dir.glob("*-out.txt"))
        assert len(out_logs) == 1
        assert out_logs[0].read_bytes() == b"Upload finished\n"

    @patch("subprocess.run")
    def test_failed_upload_removes_stale_id(self, mock_run, notarizer, dmg_dir, tmp_path):
        mock_run.side_effect = tool_output(b"", returncode=1)
        request_file = tmp_path / "request-id.txt"
        request_file.write_text("old-id")

        with pytest.raises(ExternalToolError):
            notarizer.submit(TargetFormat.DMG, dmg_dir, request_file)
        assert not request_file.exists()

    @patch("subprocess.run")
    def test_missing_artifact(self, mock_run, notarizer, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(FileError):
            notarizer.submit(TargetFormat.DMG, empty, tmp_path / "request-id.txt")
        mock_run.assert_not_called()


class TestCheck:
    """Tests for Notarizer.check()."""

    @patch("subprocess.run")
    def test_missing_request_file(self, mock_run, notarizer, tmp_path):
        with pytest.raises(FileError, match="does not exist"):
            notarizer.check(tmp_path / "request-id.txt")
        mock_run.assert_not_called()

    @patch("subprocess.run")
    def test_returns_raw_output(self, mock_run, notarizer, tmp_path):
        status = b"Status: in progress\nStatus Message: Package Approved\n"
        mock_run.side_effect = tool_output(status)
        request_file = tmp_path / "request-id.txt"
        request_file.write_text("2a1b3c4d")

        assert notarizer.check(request_file) == status.decode()

        command = mock_run.call_args.args[0]
        assert command == [
            XCRUN,
            "altool",
            "--notarization-info",
            "2a1b3c4d",
            "--username",
            "john@example.com",
            "--password",
            "@keychain:AC_PASSWORD",
        ]

    @patch("subprocess.run")
    def test_check_does_not_need_bundle_id(self, mock_run, logs_dir, tmp_path):
        mock_run.side_effect = tool_output(b"Status: success\n")
        request_file = tmp_path / "request-id.txt"
        request_file.write_text("abc")
        notarizer = Notarizer(ToolInvoker(logs_dir), apple_id="a@b.c", password="p")
        assert notarizer.check(request_file) == "Status: success\n"


class TestFindOutput:
    """Tests for find_output_file_or_dir()."""

    def test_installer(self, dmg_dir):
        found = find_output_file_or_dir(dmg_dir, TargetFormat.DMG)
        assert found.name == "MyApp-1.0.0.dmg"

    def test_installer_ignores_other_files(self, dmg_dir):
        (dmg_dir / "notes.txt").write_text("x")
        assert find_output_file_or_dir(dmg_dir, TargetFormat.DMG).suffix == ".dmg"

    def test_app_image_directory(self, tmp_path):
        (tmp_path / "MyApp.app").mkdir()
        (tmp_path / "stray.txt").write_text("x")
        found = find_output_file_or_dir(tmp_path, TargetFormat.APP_IMAGE)
        assert found.name == "MyApp.app"

    def test_nothing_found(self, tmp_path):
        with pytest.raises(FileError, match="No pkg output"):
            find_output_file_or_dir(tmp_path, TargetFormat.PKG)

    def test_several_found(self, dmg_dir):
        (dmg_dir / "Other.dmg").write_bytes(b"dmg")
        with pytest.raises(FileError, match="single"):
            find_output_file_or_dir(dmg_dir, TargetFormat.DMG)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileError):
            find_output_file_or_dir(tmp_path / "missing", TargetFormat.DMG)
