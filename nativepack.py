#!/usr/bin/env python3
"""nativepack - native application packager built on jpackage.

This module provides tools for:
1. Staging application jars into a working directory, incrementally or in
   full, optionally code-signing them on macOS
2. Translating a package description into a jpackage command line and
   running it to produce an app image or an OS installer
3. Submitting the produced installer for Apple notarization and checking
   the status of a submission later, possibly from another process

Usage (CLI):
    # Build a Debian package described in .nativepack.toml
    nativepack package --format deb

    # Upload a dmg for notarization, then query it later
    nativepack notarize --format dmg
    nativepack check-notarization --format dmg

    # Print the order-independent fingerprint of a jar
    nativepack fingerprint app.jar

Usage (API):
    from nativepack import BuildContext, NativePackager, PackageSpec, TargetFormat

    spec = PackageSpec(
        target_format=TargetFormat.DEB,
        package_name="myapp",
        main_jar=Path("libs/myapp.jar"),
        main_class="com.example.MainKt",
    )
    packager = NativePackager(
        spec,
        files=[Path("libs/dep.jar")],
        destination_dir=Path("build/binaries/deb"),
        context=BuildContext(Path("build")),
    )
    packager.process()
"""

import argparse
import datetime
import itertools
import json
import logging
import os
import re
import shutil
import subprocess
import sys
import tomllib
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

from dotenv import load_dotenv

import jarutils

# ----------------------------------------------------------------------------
# Constants

__version__ = "0.3.0"

# Type aliases
Pathlike = Path | str

# Environment variable names
ENV_JAVA_HOME = "JAVA_HOME"
ENV_APPLE_ID = "NOTARIZATION_APPLE_ID"
ENV_NOTARIZATION_PASSWORD = "NOTARIZATION_PASSWORD"

# macOS tools
XCRUN = "/usr/bin/xcrun"
CODESIGN = "/usr/bin/codesign"

# Log file timestamps have second granularity
LOG_TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"

# altool prints "RequestUUID = <uuid>" after a successful upload
REQUEST_UUID_PATTERN = re.compile(r"RequestUUID = ([A-Za-z0-9\-]+)")

BUNDLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-.]+$")

DEFAULT_BUILD_DIR = "build"
DEFAULT_TASK_NAME = "package"
REQUEST_ID_FILE_NAME = "request-id.txt"

# ----------------------------------------------------------------------------
# dotenv support


def _load_dotenv() -> None:
    """Load a .env file from the current directory, if present."""
    load_dotenv()


_load_dotenv()

# ----------------------------------------------------------------------------
# Configuration file support


def load_config(config_path: Path | None = None) -> dict[str, object]:
    """Load configuration from a TOML file.

    Searches for configuration in the following order:
    1. Explicit config_path if provided
    2. .nativepack.toml in current directory
    3. nativepack.toml in current directory

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Configuration dictionary (empty if no config found)

    Raises:
        ConfigurationError: If an explicit config file is missing or a
            config file cannot be parsed

    Example .nativepack.toml:
        [package]
        name = "myapp"
        version = "1.0.0"
        main_jar = "build/libs/myapp.jar"
        main_class = "com.example.MainKt"
        files = ["build/libs/dep.jar"]

        [package.macos]
        bundle_id = "com.example.myapp"

        [package.macos.signing]
        sign = true
        identity = "John Doe"

        [notarization]
        apple_id = "john@example.com"
    """
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        paths_to_try = [config_path]
    else:
        cwd = Path.cwd()
        paths_to_try = [
            cwd / ".nativepack.toml",
            cwd / "nativepack.toml",
        ]

    for path in paths_to_try:
        if path.exists():
            try:
                with open(path, "rb") as f:
                    data: dict[str, object] = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(
                    f"Invalid config file {path}: {e}"
                ) from e
            return data

    return {}


def get_config_section(
    config: dict[str, object], section: str
) -> dict[str, Any]:
    """Get a (possibly nested, dot separated) section of the config.

    Args:
        config: Configuration dictionary
        section: Section name (e.g., "package", "package.macos.signing")

    Returns:
        Section dictionary, empty if absent or not a table
    """
    current: object = config
    for part in section.split("."):
        if not isinstance(current, dict):
            return {}
        current = current.get(part, {})
    return current if isinstance(current, dict) else {}


def get_config_value(
    config: dict[str, object],
    section: str,
    key: str,
    default: Any = None,
) -> Any:
    """Get a value from config with section.key lookup.

    Args:
        config: Configuration dictionary
        section: Section name (e.g., "package", "package.linux")
        key: Key name within section
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    value = get_config_section(config, section).get(key, default)
    return default if value is None else value


# ----------------------------------------------------------------------------
# Error handling


class NativePackError(Exception):
    """Base exception class for nativepack errors."""


class ConfigurationError(NativePackError):
    """Exception raised when configuration is invalid."""


class FileError(NativePackError):
    """Exception raised when an expected file or directory is missing."""


class OutputParseError(NativePackError):
    """Exception raised when expected text is absent from tool output."""


class ExternalToolError(NativePackError):
    """Exception raised when an external tool exits abnormally.

    The captured logs are kept on disk so the failure can be reproduced and
    diagnosed by hand.
    """

    def __init__(
        self,
        command: list[str],
        working_dir: Path | None,
        returncode: int,
        stdout_log: Path | None = None,
        stderr_log: Path | None = None,
    ):
        self.command = command
        self.working_dir = working_dir
        self.returncode = returncode
        self.stdout_log = stdout_log
        self.stderr_log = stderr_log
        lines = [
            "External tool execution failed:",
            f"* Command: [{' '.join(command)}]",
            f"* Working dir: [{working_dir.absolute() if working_dir else ''}]",
            f"* Exit code: {returncode}",
            f"* Standard output log: {stdout_log.absolute() if stdout_log else ''}",
            f"* Error log: {stderr_log.absolute() if stderr_log else ''}",
        ]
        super().__init__("\n".join(lines))


# ----------------------------------------------------------------------------
# Platforms and target formats


class OS(Enum):
    """Operating systems jpackage can produce packages on."""

    LINUX = "linux"
    WINDOWS = "windows"
    MACOS = "macos"


def current_os() -> OS:
    """Return the operating system this process runs on.

    Raises:
        ConfigurationError: On platforms jpackage does not support
    """
    if sys.platform == "darwin":
        return OS.MACOS
    if sys.platform.startswith("win"):
        return OS.WINDOWS
    if sys.platform.startswith("linux"):
        return OS.LINUX
    raise ConfigurationError(f"Unsupported platform: {sys.platform}")


class TargetFormat(Enum):
    """Distributable kinds; the value is the jpackage --type id."""

    APP_IMAGE = "app-image"
    DEB = "deb"
    RPM = "rpm"
    DMG = "dmg"
    PKG = "pkg"
    EXE = "exe"
    MSI = "msi"

    @property
    def id(self) -> str:
        return self.value

    @property
    def file_ext(self) -> str:
        if self is TargetFormat.APP_IMAGE:
            return ""
        return f".{self.value}"

    @property
    def target_os(self) -> OS | None:
        """The only OS able to build this format (None for any)."""
        return _FORMAT_OS.get(self)

    def is_compatible_with(self, platform: OS) -> bool:
        return self.target_os is None or self.target_os is platform


_FORMAT_OS = {
    TargetFormat.DEB: OS.LINUX,
    TargetFormat.RPM: OS.LINUX,
    TargetFormat.DMG: OS.MACOS,
    TargetFormat.PKG: OS.MACOS,
    TargetFormat.EXE: OS.WINDOWS,
    TargetFormat.MSI: OS.WINDOWS,
}


# ----------------------------------------------------------------------------
# Logging configuration


class CustomFormatter(logging.Formatter):
    """Log formatter with elapsed time and per-level colors.

    Records render as ``HH:MM:SS - LEVEL - logger.func - message``. Tool
    names and paths are long, so only the level is colored by default; the
    message stays in the terminal's own color.
    """

    RESET = "\x1b[0m"
    DIM = "\x1b[2m"

    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[32;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    PLAIN_FORMAT = "%(delta)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color
        self._plain = logging.Formatter(self.PLAIN_FORMAT)
        self._colored = {
            level: logging.Formatter(
                f"{self.DIM}%(delta)s{self.RESET} - "
                f"{color}%(levelname)s{self.RESET} - "
                f"{self.DIM}%(name)s.%(funcName)s{self.RESET} - %(message)s"
            )
            for level, color in self.LEVEL_COLORS.items()
        }

    def format(self, record: logging.LogRecord) -> str:
        elapsed = datetime.datetime.fromtimestamp(
            record.relativeCreated / 1000, datetime.timezone.utc
        )
        record.delta = elapsed.strftime("%H:%M:%S")
        if not self.use_color:
            return self._plain.format(record)
        return self._colored.get(record.levelno, self._plain).format(record)


def setup_logging(debug: bool = False, use_color: bool = True) -> None:
    """Configure logging for the application.

    Colors are used only when stderr is a terminal, so captured build logs
    stay free of escape codes.

    Args:
        debug: Whether to enable debug logging
        use_color: Whether to use colored output
    """
    stream_handler = logging.StreamHandler()
    is_tty = getattr(stream_handler.stream, "isatty", lambda: False)()
    stream_handler.setFormatter(CustomFormatter(use_color and is_tty))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[stream_handler],
        force=True,
    )


# ----------------------------------------------------------------------------
# External tool execution


@dataclass
class ExecResult:
    """Outcome of a single external tool invocation.

    Log paths are None once the logs have been removed after a successful run.
    """

    tool: Path
    args: list[str]
    exit_code: int
    working_dir: Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    stdout_log: Path | None = None
    stderr_log: Path | None = None

    @property
    def command(self) -> list[str]:
        return [str(self.tool), *self.args]


class ToolInvoker:
    """Runs external tools, capturing their output into per-call log files.

    Each call writes ``<tool>-<timestamp>-out.txt`` and
    ``<tool>-<timestamp>-err.txt`` into ``logs_dir``. Logs of successful
    runs are deleted; logs of failed runs are kept and referenced by the
    raised ExternalToolError.

    In verbose mode the tool's output goes straight to the terminal instead,
    except that stdout is still captured when a ``process_stdout`` callback
    needs to read it.

    Args:
        logs_dir: Directory receiving the log files (created on demand)
        verbose: Pass tool output through instead of capturing it

    Example:
        invoker = ToolInvoker(Path("build/logs/package"))
        invoker.run("/usr/bin/codesign", ["--verify", "My.app"])
    """

    def __init__(self, logs_dir: Pathlike, verbose: bool = False) -> None:
        self.logs_dir = Path(logs_dir)
        self.verbose = verbose
        self._counter = itertools.count(1)
        self.log = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def resolve_tool(tool: Pathlike) -> Path:
        """Absolute path of tool, looking bare names up on PATH."""
        path = Path(tool)
        if not path.is_absolute() and len(path.parts) == 1:
            found = shutil.which(str(tool))
            if found:
                return Path(found).absolute()
        return path.absolute()

    def _log_files(self, tool_name: str) -> tuple[Path, Path]:
        """Pick a stdout/stderr log pair that does not collide with older logs."""
        stamp = datetime.datetime.now().strftime(LOG_TIMESTAMP_FORMAT)
        base = f"{tool_name}-{stamp}"
        while True:
            out_file = self.logs_dir / f"{base}-out.txt"
            err_file = self.logs_dir / f"{base}-err.txt"
            if not out_file.exists() and not err_file.exists():
                return out_file, err_file
            base = f"{tool_name}-{stamp}-{next(self._counter)}"

    def run(
        self,
        tool: Pathlike,
        args: Iterable[object],
        env: dict[str, str] | None = None,
        working_dir: Pathlike | None = None,
        check_exit_normal: bool = True,
        process_stdout: Callable[[Path], None] | None = None,
    ) -> ExecResult:
        """Run tool with args and classify the outcome.

        Args:
            tool: Executable path or bare name looked up on PATH
            args: Arguments, converted with str()
            env: Environment overrides merged over os.environ
            working_dir: Working directory for the process
            check_exit_normal: Raise on a non-zero exit code
            process_stdout: Called with the stdout log after a zero exit,
                before the logs are removed

        Returns:
            The invocation result

        Raises:
            ExternalToolError: On a non-zero exit with check_exit_normal
            FileError: If the tool cannot be started
        """
        tool_path = self.resolve_tool(tool)
        arg_list = [str(arg) for arg in args]
        env_overrides = {k: str(v) for k, v in (env or {}).items()}
        cwd = Path(working_dir) if working_dir is not None else None
        command = [str(tool_path), *arg_list]

        self.logs_dir.mkdir(parents=True, exist_ok=True)
        out_file, err_file = self._log_files(tool_path.stem)

        full_env = os.environ.copy()
        full_env.update(env_overrides)

        capture_stdout = not self.verbose or process_stdout is not None
        capture_stderr = not self.verbose

        self.log.debug("%s", " ".join(command))
        try:
            with open(out_file, "wb") as out_stream, open(
                err_file, "wb"
            ) as err_stream:
                completed = subprocess.run(
                    command,
                    cwd=cwd,
                    env=full_env,
                    stdout=out_stream if capture_stdout else None,
                    stderr=err_stream if capture_stderr else None,
                    check=False,
                )
        except OSError as e:
            out_file.unlink(missing_ok=True)
            err_file.unlink(missing_ok=True)
            raise FileError(f"Cannot run {tool_path}: {e}") from e

        result = ExecResult(
            tool=tool_path,
            args=arg_list,
            exit_code=completed.returncode,
            working_dir=cwd,
            env=env_overrides,
            stdout_log=out_file,
            stderr_log=err_file,
        )

        if result.exit_code == 0:
            if process_stdout is not None:
                if self.verbose:
                    self.log.debug(
                        "%s", out_file.read_text(encoding="utf-8", errors="replace")
                    )
                process_stdout(out_file)
            out_file.unlink(missing_ok=True)
            err_file.unlink(missing_ok=True)
            result.stdout_log = None
            result.stderr_log = None
        elif check_exit_normal:
            raise ExternalToolError(
                command, cwd, result.exit_code, out_file, err_file
            )
        else:
            self.log.debug(
                "%s exited with %d (not checked)", tool_path.name, result.exit_code
            )

        return result


# ----------------------------------------------------------------------------
# Package description and signing settings


@dataclass
class LinuxSettings:
    """Linux installer options."""

    shortcut: bool | None = None
    package_name: str | None = None
    app_release: str | None = None
    app_category: str | None = None
    deb_maintainer: str | None = None
    menu_group: str | None = None
    rpm_license_type: str | None = None


@dataclass
class WindowsSettings:
    """Windows launcher and installer options."""

    console: bool | None = None
    dir_chooser: bool | None = None
    per_user_install: bool | None = None
    shortcut: bool | None = None
    menu: bool | None = None
    menu_group: str | None = None
    upgrade_uuid: str | None = None


@dataclass
class MacOSSigningSettings:
    """Unvalidated macOS signing options; only honoured when sign is True."""

    sign: bool = False
    identity: str | None = None
    keychain: str | None = None
    prefix: str | None = None


@dataclass
class MacOSSettings:
    """macOS package options."""

    package_name: str | None = None
    bundle_id: str | None = None
    signing: MacOSSigningSettings | None = None


@dataclass
class PackageSpec:
    """Everything jpackage needs to know about the distributable.

    Args:
        target_format: Kind of distributable to produce
        package_name: Application name (jpackage --name)
        main_jar: Jar holding the launcher's main class
        main_class: Fully qualified launcher main class
        app_image: Pre-built app image to wrap into an installer
        runtime_image: Pre-built Java runtime to embed
        launcher_args: Default arguments passed to the application
        launcher_jvm_args: JVM options for the launcher
        free_args: Extra raw jpackage arguments appended last
        wix_toolset_dir: WiX binaries, prepended to PATH on Windows
    """

    target_format: TargetFormat
    package_name: str
    description: str | None = None
    version: str | None = None
    vendor: str | None = None
    copyright: str | None = None
    main_jar: Path | None = None
    main_class: str | None = None
    runtime_image: Path | None = None
    app_image: Path | None = None
    icon_file: Path | None = None
    license_file: Path | None = None
    installation_path: str | None = None
    launcher_args: list[str] = field(default_factory=list)
    launcher_jvm_args: list[str] = field(default_factory=list)
    free_args: list[str] = field(default_factory=list)
    wix_toolset_dir: Path | None = None
    linux: LinuxSettings = field(default_factory=LinuxSettings)
    windows: WindowsSettings = field(default_factory=WindowsSettings)
    macos: MacOSSettings = field(default_factory=MacOSSettings)


@dataclass(frozen=True)
class ValidatedSigning:
    """Signing identity checked and completed by validate_signing()."""

    bundle_id: str
    identity: str
    keychain: str | None
    prefix: str


def validate_bundle_id(bundle_id: str | None) -> str:
    """Check a macOS bundle identifier.

    Raises:
        ConfigurationError: If the identifier is empty or malformed
    """
    if not bundle_id:
        raise ConfigurationError("macOS bundle ID is empty or not set")
    if not BUNDLE_ID_PATTERN.match(bundle_id):
        raise ConfigurationError(
            f"macOS bundle ID '{bundle_id}' has invalid format: "
            "only alphanumeric characters, '-' and '.' are allowed"
        )
    return bundle_id


def default_bundle_id(spec: PackageSpec) -> str:
    """Derive a bundle id from the main class package and package name."""
    name = re.sub(r"[^A-Za-z0-9\-.]", "-", spec.package_name)
    if spec.main_class and "." in spec.main_class:
        package = spec.main_class.rsplit(".", 1)[0]
        return f"{package}.{name}"
    return name


def validate_signing(
    settings: MacOSSigningSettings,
    bundle_id: str | None,
    fallback_bundle_id: str | None = None,
) -> ValidatedSigning:
    """Validate signing settings and fill in derived values.

    The bundle id falls back to fallback_bundle_id when unset; the signing
    prefix falls back to the bundle id up to and including its last dot.

    Args:
        settings: Signing settings as configured
        bundle_id: Configured macOS bundle id (may be None)
        fallback_bundle_id: Default used when bundle_id is unset

    Returns:
        Validated signing settings

    Raises:
        ConfigurationError: If any setting is missing or invalid
    """
    resolved_id = validate_bundle_id(bundle_id or fallback_bundle_id)

    if not settings.identity:
        raise ConfigurationError(
            "Signing identity is not set; set package.macos.signing.identity"
        )

    keychain = settings.keychain
    if keychain:
        keychain_path = Path(keychain).expanduser()
        if keychain_path.exists():
            keychain = str(keychain_path.absolute())
        elif len(keychain_path.parts) > 1:
            raise ConfigurationError(f"Keychain file not found: {keychain}")

    prefix = settings.prefix
    if not prefix:
        if "." not in resolved_id:
            raise ConfigurationError(
                f"Cannot derive signing prefix from bundle ID '{resolved_id}'; "
                "set package.macos.signing.prefix"
            )
        prefix = resolved_id.rsplit(".", 1)[0] + "."

    return ValidatedSigning(
        bundle_id=resolved_id,
        identity=settings.identity,
        keychain=keychain,
        prefix=prefix,
    )


def resolve_signing(spec: PackageSpec, platform: OS) -> ValidatedSigning | None:
    """Validated signing settings, or None when signing does not apply.

    Signing applies only on macOS and only when explicitly enabled.
    """
    signing = spec.macos.signing
    if platform is not OS.MACOS or signing is None or not signing.sign:
        return None
    return validate_signing(signing, spec.macos.bundle_id, default_bundle_id(spec))


# ----------------------------------------------------------------------------
# File copying processors


class FileCopyingProcessor:
    """Produces a staged file from a declared input."""

    kind = "base"

    @property
    def cache_key(self) -> dict[str, Any]:
        """Everything that shapes the staged output besides the input itself."""
        return {"kind": self.kind}

    def copy(self, source: Path, target: Path) -> None:
        raise NotImplementedError


class PlainCopyProcessor(FileCopyingProcessor):
    """Byte-for-byte copy, overwriting the target."""

    kind = "plain"

    def copy(self, source: Path, target: Path) -> None:
        source = Path(source)
        target = Path(target)
        if not source.is_file():
            raise FileError(f"Input file does not exist: {source}")
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_dir():
            shutil.rmtree(target)
        shutil.copy(source, target)


class MacSignCopyProcessor(FileCopyingProcessor):
    """Copies a file through a scratch directory, code-signing it on the way.

    Native libraries embedded in jar archives are signed too, since macOS
    refuses to load unsigned libraries extracted at runtime from a notarized
    application.

    Args:
        scratch_dir: Cleared directory exclusive to this run
        signing: Validated signing identity
        invoker: Runs codesign
    """

    kind = "mac-sign"

    def __init__(
        self,
        scratch_dir: Path,
        signing: ValidatedSigning,
        invoker: ToolInvoker,
    ) -> None:
        self.scratch_dir = Path(scratch_dir)
        self.signing = signing
        self.invoker = invoker
        self.log = logging.getLogger(self.__class__.__name__)

    @property
    def cache_key(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "identity": self.signing.identity,
            "keychain": self.signing.keychain,
            "prefix": self.signing.prefix,
        }

    def codesign(self, path: Path) -> None:
        """Sign path in place with the bound identity."""
        args = [
            "-vvvv",
            "--timestamp",
            "--options",
            "runtime",
            "--force",
            "--prefix",
            self.signing.prefix,
            "--sign",
            self.signing.identity,
        ]
        if self.signing.keychain:
            args.extend(["--keychain", self.signing.keychain])
        args.append(str(path.absolute()))
        self.log.debug("signing: %s", path)
        self.invoker.run(CODESIGN, args)

    def sign_native_libraries(self, archive: Path) -> None:
        """Sign native libraries stored inside archive, rewriting it."""
        unpack_dir = self.scratch_dir / f"{archive.name}.unpacked"

        def sign_entry(info: zipfile.ZipInfo, payload: bytes) -> bytes:
            entry = Path(info.filename)
            if entry.is_absolute() or ".." in entry.parts:
                return payload
            if entry.suffix and entry.suffix not in jarutils.NATIVE_LIBRARY_SUFFIXES:
                return payload
            unpacked = unpack_dir / entry
            unpacked.parent.mkdir(parents=True, exist_ok=True)
            unpacked.write_bytes(payload)
            if not jarutils.is_native_library(unpacked):
                return payload
            self.codesign(unpacked)
            return unpacked.read_bytes()

        try:
            jarutils.transform_archive(archive, archive, sign_entry)
        finally:
            shutil.rmtree(unpack_dir, ignore_errors=True)

    def copy(self, source: Path, target: Path) -> None:
        source = Path(source)
        target = Path(target)
        if not source.is_file():
            raise FileError(f"Cannot sign missing input file: {source}")

        scratch_copy = self.scratch_dir / source.name
        if scratch_copy.exists():
            scratch_copy.unlink()
        shutil.copy(source, scratch_copy)

        if jarutils.is_archive(scratch_copy):
            self.sign_native_libraries(scratch_copy)
        self.codesign(scratch_copy)

        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            target.unlink()
        shutil.move(str(scratch_copy), str(target))


def select_file_processor(
    signing: ValidatedSigning | None,
    scratch_dir: Path,
    invoker: ToolInvoker,
) -> FileCopyingProcessor:
    """Choose the processor for one synchronization run.

    With signing, the scratch directory is cleared here, once per run.
    """
    if signing is None:
        return PlainCopyProcessor()
    scratch_dir = Path(scratch_dir)
    if scratch_dir.exists():
        shutil.rmtree(scratch_dir)
    scratch_dir.mkdir(parents=True)
    return MacSignCopyProcessor(scratch_dir, signing, invoker)


# ----------------------------------------------------------------------------
# Working directory synchronization


class ChangeType(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class FileChange:
    path: Path
    change_type: ChangeType


@dataclass
class FileSyncPlan:
    """Either a full rebuild or a list of per-input changes."""

    incremental: bool
    changes: list[FileChange] = field(default_factory=list)

    @classmethod
    def full(cls) -> "FileSyncPlan":
        return cls(incremental=False)

    @classmethod
    def from_changes(cls, changes: Iterable[FileChange]) -> "FileSyncPlan":
        return cls(incremental=True, changes=list(changes))


def _delete_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


class WorkingDirSynchronizer:
    """Reconciles declared inputs into a staging directory.

    Every input lands at ``working_dir / input.name`` after going through the
    processor chosen for the run.

    Args:
        working_dir: Staging directory exclusive to this run
        processor: The processor applied to every input
    """

    def __init__(
        self, working_dir: Pathlike, processor: FileCopyingProcessor
    ) -> None:
        self.working_dir = Path(working_dir)
        self.processor = processor
        self.log = logging.getLogger(self.__class__.__name__)

    def sync(
        self, inputs: Iterable[Path], plan: FileSyncPlan | None = None
    ) -> None:
        """Bring the working dir in line with inputs.

        Args:
            inputs: Declared input files (used by full runs)
            plan: Incremental changes; None or a full plan rebuilds everything
        """
        if plan is not None and plan.incremental:
            self._sync_incremental(inputs, plan)
        else:
            self._sync_full(inputs)

    def _sync_incremental(
        self, inputs: Iterable[Path], plan: FileSyncPlan
    ) -> None:
        self.log.debug(
            "Updating working dir incrementally: %s", self.working_dir
        )
        self.working_dir.mkdir(parents=True, exist_ok=True)
        deleted: set[str] = set()
        copied: set[str] = set()
        for change in plan.changes:
            target = self.working_dir / change.path.name
            if change.change_type is ChangeType.REMOVED:
                _delete_path(target)
                deleted.add(target.name)
                self.log.debug("Deleted: %s", target)
            else:
                self.processor.copy(change.path, target)
                copied.add(target.name)
                self.log.debug("Updated: %s", target)

        # an unchanged input may share its name with a removed one
        restore = {
            Path(source).name: Path(source)
            for source in inputs
            if Path(source).name in deleted - copied
        }
        for name, source in restore.items():
            self.processor.copy(source, self.working_dir / name)
            self.log.debug("Restored: %s", self.working_dir / name)

    def _sync_full(self, inputs: Iterable[Path]) -> None:
        self.log.debug(
            "Updating working dir non-incrementally: %s", self.working_dir
        )
        if self.working_dir.exists():
            shutil.rmtree(self.working_dir)
        self.working_dir.mkdir(parents=True)

        for source in inputs:
            source = Path(source)
            target = self.working_dir / source.name
            if target.exists():
                self.log.warning("File already exists: %s", target)
            self.processor.copy(source, target)


class SyncStateTracker:
    """Remembers input fingerprints between runs to plan incremental syncs.

    State is a small JSON document: the processor cache key (kind plus any
    signing settings) and a mapping of absolute input path to fingerprint.

    Args:
        state_file: Where the state is stored
    """

    def __init__(self, state_file: Pathlike) -> None:
        self.state_file = Path(state_file)
        self.log = logging.getLogger(self.__class__.__name__)

    def load(self) -> dict[str, Any] | None:
        if not self.state_file.exists():
            return None
        try:
            state = json.loads(self.state_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self.log.debug("Ignoring unreadable state %s: %s", self.state_file, e)
            return None
        if not isinstance(state, dict) or not isinstance(state.get("files"), dict):
            return None
        return state

    @staticmethod
    def fingerprints(inputs: Iterable[Path]) -> dict[str, str]:
        return {
            str(Path(p).absolute()): jarutils.file_fingerprint(p) for p in inputs
        }

    def plan(
        self,
        inputs: Iterable[Path],
        working_dir: Path,
        processor_key: object,
    ) -> FileSyncPlan:
        """Compare inputs with the previous run.

        A full plan is returned when there is no usable previous state, the
        working dir is gone, or the processor key changed (a different
        processor, or the same one with other signing settings).
        """
        state = self.load()
        if (
            state is None
            or state.get("processor") != processor_key
            or not Path(working_dir).is_dir()
        ):
            return FileSyncPlan.full()

        previous: dict[str, str] = state["files"]
        current = self.fingerprints(inputs)

        changes = [
            FileChange(Path(path), ChangeType.REMOVED)
            for path in previous
            if path not in current
        ]
        for path, fingerprint in current.items():
            if path not in previous:
                changes.append(FileChange(Path(path), ChangeType.ADDED))
            elif previous[path] != fingerprint:
                changes.append(FileChange(Path(path), ChangeType.MODIFIED))
        return FileSyncPlan.from_changes(changes)

    def invalidate(self) -> None:
        self.state_file.unlink(missing_ok=True)

    def save(self, inputs: Iterable[Path], processor_key: object) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        state = {
            "processor": processor_key,
            "files": self.fingerprints(inputs),
        }
        self.state_file.write_text(json.dumps(state, indent=2), encoding="utf-8")


# ----------------------------------------------------------------------------
# jpackage command line


def _cli_arg(args: list[str], name: str, value: object) -> None:
    """Append a flag: None and False are skipped, True is a bare flag."""
    if value is None or value is False:
        return
    if value is True:
        args.append(name)
        return
    if isinstance(value, Path):
        value = value.absolute()
    args.extend([name, str(value)])


def build_packaging_args(
    spec: PackageSpec,
    platform: OS,
    staging_dir: Path,
    destination_dir: Path,
    verbose: bool = False,
) -> list[str]:
    """Translate spec into jpackage arguments.

    Launcher arguments (--input, --main-class, ...) are emitted when building
    an app image or an installer without a pre-built app image. Installer
    arguments (--app-image, --install-dir, ...) are emitted for every format
    except app-image.

    Args:
        spec: Package description
        platform: OS the package is built on
        staging_dir: Directory holding the staged input files
        destination_dir: Where jpackage writes the result
        verbose: Pass --verbose to jpackage

    Returns:
        The argument list (without the tool itself)

    Raises:
        ConfigurationError: If enabled signing settings are invalid
    """
    signing = resolve_signing(spec, platform)
    fmt = spec.target_format
    args: list[str] = []

    if fmt is TargetFormat.APP_IMAGE or spec.app_image is None:
        _cli_arg(args, "--input", Path(staging_dir))
        _cli_arg(args, "--runtime-image", spec.runtime_image)
        _cli_arg(args, "--main-jar", spec.main_jar.name if spec.main_jar else None)
        _cli_arg(args, "--main-class", spec.main_class)
        if platform is OS.WINDOWS:
            _cli_arg(args, "--win-console", spec.windows.console)
        _cli_arg(args, "--icon", spec.icon_file)
        for launcher_arg in spec.launcher_args:
            _cli_arg(args, "--arguments", launcher_arg)
        for jvm_arg in spec.launcher_jvm_args:
            _cli_arg(args, "--java-options", jvm_arg)

    if fmt is not TargetFormat.APP_IMAGE:
        _cli_arg(args, "--app-image", spec.app_image)
        _cli_arg(args, "--install-dir", spec.installation_path)
        _cli_arg(args, "--license-file", spec.license_file)

        if platform is OS.LINUX:
            linux = spec.linux
            _cli_arg(args, "--linux-shortcut", linux.shortcut)
            _cli_arg(args, "--linux-package-name", linux.package_name)
            _cli_arg(args, "--linux-app-release", linux.app_release)
            _cli_arg(args, "--linux-app-category", linux.app_category)
            _cli_arg(args, "--linux-deb-maintainer", linux.deb_maintainer)
            _cli_arg(args, "--linux-menu-group", linux.menu_group)
            _cli_arg(args, "--linux-rpm-license-type", linux.rpm_license_type)
        elif platform is OS.WINDOWS:
            windows = spec.windows
            _cli_arg(args, "--win-dir-chooser", windows.dir_chooser)
            _cli_arg(args, "--win-per-user-install", windows.per_user_install)
            _cli_arg(args, "--win-shortcut", windows.shortcut)
            _cli_arg(args, "--win-menu", windows.menu)
            _cli_arg(args, "--win-menu-group", windows.menu_group)
            _cli_arg(args, "--win-upgrade-uuid", windows.upgrade_uuid)

    _cli_arg(args, "--type", fmt.id)
    _cli_arg(args, "--dest", Path(destination_dir))
    _cli_arg(args, "--verbose", verbose)

    _cli_arg(args, "--name", spec.package_name)
    _cli_arg(args, "--description", spec.description)
    _cli_arg(args, "--copyright", spec.copyright)
    _cli_arg(args, "--app-version", spec.version)
    _cli_arg(args, "--vendor", spec.vendor)

    if platform is OS.MACOS:
        _cli_arg(args, "--mac-package-name", spec.macos.package_name)
        bundle_id = signing.bundle_id if signing else spec.macos.bundle_id
        _cli_arg(args, "--mac-package-identifier", bundle_id)
        if signing is not None:
            _cli_arg(args, "--mac-sign", True)
            _cli_arg(args, "--mac-signing-key-user-name", signing.identity)
            _cli_arg(args, "--mac-signing-keychain", signing.keychain)
            _cli_arg(args, "--mac-package-signing-prefix", signing.prefix)

    args.extend(spec.free_args)
    return args


def find_output_file_or_dir(directory: Path, target_format: TargetFormat) -> Path:
    """Locate the artifact jpackage produced in directory.

    An app image is the single directory inside; an installer is the single
    file with the format's extension.

    Raises:
        FileError: If there is no such artifact, or more than one
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileError(f"Directory does not exist: {directory}")

    if target_format is TargetFormat.APP_IMAGE:
        candidates = [p for p in directory.iterdir() if p.is_dir()]
    else:
        candidates = [
            p
            for p in directory.iterdir()
            if p.is_file() and p.name.endswith(target_format.file_ext)
        ]

    if not candidates:
        raise FileError(
            f"No {target_format.id} output found in {directory}"
        )
    if len(candidates) > 1:
        names = ", ".join(sorted(p.name for p in candidates))
        raise FileError(
            f"Expected a single {target_format.id} output in {directory}, "
            f"found: {names}"
        )
    return candidates[0]


# ----------------------------------------------------------------------------
# Packaging run


@dataclass(frozen=True)
class BuildContext:
    """Per-run directories, passed explicitly to every component.

    Two runs sharing a build_dir and task_name must not overlap.
    """

    build_dir: Path
    task_name: str = DEFAULT_TASK_NAME

    @property
    def logs_dir(self) -> Path:
        return Path(self.build_dir) / "logs" / self.task_name

    @property
    def working_dir(self) -> Path:
        return Path(self.build_dir) / "tmp" / self.task_name / "files"

    @property
    def sign_dir(self) -> Path:
        return Path(self.build_dir) / "tmp" / "sign"

    @property
    def state_file(self) -> Path:
        return Path(self.build_dir) / "tmp" / self.task_name / "state.json"


class NativePackager:
    """Stages inputs and runs jpackage to build one distributable.

    Args:
        spec: Package description
        files: Declared input files; the main jar is added automatically
        destination_dir: Output directory (cleared before jpackage runs)
        context: Per-run directories
        platform: Host OS (default: detected)
        verbose: Debug output and jpackage --verbose
        incremental: Reuse the previous run's staging directory when possible
        java_home: JDK providing jpackage (default: JAVA_HOME, then PATH)

    Example:
        packager = NativePackager(spec, files, Path("out"), BuildContext(Path("build")))
        distribution = packager.process()
    """

    def __init__(
        self,
        spec: PackageSpec,
        files: Iterable[Pathlike],
        destination_dir: Pathlike,
        context: BuildContext,
        platform: OS | None = None,
        verbose: bool = False,
        incremental: bool = True,
        java_home: Pathlike | None = None,
    ) -> None:
        self.spec = spec
        self.files = [Path(f) for f in files]
        self.destination_dir = Path(destination_dir)
        self.context = context
        self.platform = platform or current_os()
        self.verbose = verbose
        self.incremental = incremental
        self.java_home = java_home or os.getenv(ENV_JAVA_HOME)
        self.invoker = ToolInvoker(context.logs_dir, verbose=verbose)
        self.log = logging.getLogger(self.__class__.__name__)

    def jpackage_tool(self) -> Path:
        """Locate the jpackage executable.

        Raises:
            ConfigurationError: If jpackage cannot be found
        """
        exe = "jpackage.exe" if self.platform is OS.WINDOWS else "jpackage"
        if self.java_home:
            tool = Path(self.java_home) / "bin" / exe
            if not tool.exists():
                raise ConfigurationError(
                    f"jpackage not found in JDK: {tool}"
                )
            return tool
        found = shutil.which("jpackage")
        if not found:
            raise ConfigurationError(
                "jpackage not found. Set JAVA_HOME or pass java_home "
                "pointing to a JDK 14 or newer."
            )
        return Path(found)

    def input_files(self) -> list[Path]:
        """Declared inputs plus the main jar, without duplicates.

        Raises:
            FileError: If an input does not exist
        """
        candidates = list(self.files)
        if self.spec.main_jar is not None:
            candidates.append(Path(self.spec.main_jar))

        inputs: list[Path] = []
        seen: set[Path] = set()
        for path in candidates:
            key = path.absolute()
            if key in seen:
                continue
            if not path.is_file():
                raise FileError(f"Input file does not exist: {path}")
            seen.add(key)
            inputs.append(path)
        return inputs

    def environment(self) -> dict[str, str]:
        """Environment overrides for jpackage."""
        env: dict[str, str] = {}
        if self.platform is OS.WINDOWS and self.spec.wix_toolset_dir:
            wix_path = str(Path(self.spec.wix_toolset_dir).absolute())
            env["PATH"] = f"{wix_path};{os.environ.get('PATH', '')}"
        return env

    def prepare_working_dir(self, signing: ValidatedSigning | None) -> Path:
        """Synchronize inputs into the staging directory."""
        ctx = self.context
        processor = select_file_processor(signing, ctx.sign_dir, self.invoker)
        inputs = self.input_files()

        tracker = SyncStateTracker(ctx.state_file)
        if self.incremental:
            plan = tracker.plan(inputs, ctx.working_dir, processor.cache_key)
        else:
            plan = FileSyncPlan.full()
        tracker.invalidate()

        WorkingDirSynchronizer(ctx.working_dir, processor).sync(inputs, plan)
        tracker.save(inputs, processor.cache_key)
        return ctx.working_dir

    def process(self) -> Path:
        """Execute the packaging workflow.

        Returns:
            Path to the produced app image or installer

        Raises:
            ConfigurationError: For formats foreign to the platform or
                invalid signing settings (before any tool runs)
            ExternalToolError: If codesign or jpackage fails
        """
        fmt = self.spec.target_format
        if not fmt.is_compatible_with(self.platform):
            raise ConfigurationError(
                f"Format '{fmt.id}' cannot be built on {self.platform.value}"
            )
        signing = resolve_signing(self.spec, self.platform)
        tool = self.jpackage_tool()

        self.log.info("Preparing working dir: %s", self.context.working_dir)
        staging_dir = self.prepare_working_dir(signing)

        args = build_packaging_args(
            self.spec,
            self.platform,
            staging_dir,
            self.destination_dir,
            verbose=self.verbose,
        )

        if self.destination_dir.exists():
            shutil.rmtree(self.destination_dir)
        self.destination_dir.mkdir(parents=True)

        self.log.info("Running jpackage (%s)", fmt.id)
        self.invoker.run(tool, args, env=self.environment())

        output = find_output_file_or_dir(self.destination_dir, fmt)
        self.log.info("The distribution is written to %s", output.resolve())
        return output


# ----------------------------------------------------------------------------
# Notarization


class Notarizer:
    """Uploads artifacts for notarization and queries their status.

    Submission and status check are independent: the request id returned by
    the upload is written to a file, and the check reads it back, so the two
    may run in separate processes. Each check is a single query.

    Args:
        invoker: Runs xcrun
        bundle_id: Primary bundle id of the uploaded artifact
        apple_id: Apple account (fallback: NOTARIZATION_APPLE_ID)
        password: App-specific password or @keychain: reference
            (fallback: NOTARIZATION_PASSWORD)

    Example:
        notarizer = Notarizer(ToolInvoker(logs), bundle_id="com.example.app")
        notarizer.submit(TargetFormat.DMG, Path("build/binaries/dmg"), id_file)
        print(notarizer.check(id_file))
    """

    def __init__(
        self,
        invoker: ToolInvoker,
        bundle_id: str | None = None,
        apple_id: str | None = None,
        password: str | None = None,
    ) -> None:
        self.invoker = invoker
        self.bundle_id = bundle_id
        self.apple_id = apple_id or os.getenv(ENV_APPLE_ID)
        self.password = password or os.getenv(ENV_NOTARIZATION_PASSWORD)
        self.log = logging.getLogger(self.__class__.__name__)

    def validate(self, require_bundle_id: bool = True) -> None:
        """Check that the notarization settings are complete.

        Raises:
            ConfigurationError: If a required setting is missing or invalid
        """
        if require_bundle_id:
            validate_bundle_id(self.bundle_id)
        if not self.apple_id:
            raise ConfigurationError(
                "Apple ID required for notarization. "
                f"Set {ENV_APPLE_ID} environment variable or notarization.apple_id."
            )
        if not self.password:
            raise ConfigurationError(
                "Password required for notarization. "
                f"Set {ENV_NOTARIZATION_PASSWORD} environment variable."
            )

    def submit(
        self,
        target_format: TargetFormat,
        input_dir: Pathlike,
        request_id_file: Pathlike,
    ) -> str:
        """Upload the artifact found in input_dir and persist the request id.

        Args:
            target_format: Format of the artifact to upload
            input_dir: Directory holding the jpackage output
            request_id_file: Receives the request id

        Returns:
            The request id

        Raises:
            ConfigurationError: For app images or incomplete settings
            FileError: If the artifact cannot be found
            ExternalToolError: If the upload fails
            OutputParseError: If no request id appears in the output
        """
        if target_format is TargetFormat.APP_IMAGE:
            raise ConfigurationError(f"{target_format.id} cannot be notarized!")
        self.validate()

        request_id_file = Path(request_id_file)
        request_id_file.unlink(missing_ok=True)

        artifact = find_output_file_or_dir(Path(input_dir), target_format)
        if not artifact.is_file():
            raise FileError(f"Notarization input is not a file: {artifact}")

        self.log.info(
            "Uploading '%s' for notarization (package id: '%s')",
            artifact.name,
            self.bundle_id,
        )
        request_ids: list[str] = []

        def save_request_id(out_file: Path) -> None:
            output = out_file.read_text(encoding="utf-8", errors="replace")
            match = REQUEST_UUID_PATTERN.search(output)
            if match is None:
                raise OutputParseError(
                    f"Could not determine RequestUUID from output: {out_file}"
                )
            request_id = match.group(1)
            request_id_file.parent.mkdir(parents=True, exist_ok=True)
            request_id_file.write_text(request_id, encoding="utf-8")
            request_ids.append(request_id)

        self.invoker.run(
            XCRUN,
            [
                "altool",
                "--notarize-app",
                "--primary-bundle-id",
                self.bundle_id,
                "--username",
                self.apple_id,
                "--password",
                self.password,
                "--file",
                str(artifact.absolute()),
            ],
            process_stdout=save_request_id,
        )

        self.log.info("Request UUID: %s", request_ids[0])
        self.log.info(
            "Request UUID is saved to %s", request_id_file.absolute()
        )
        return request_ids[0]

    def check(self, request_id_file: Pathlike) -> str:
        """Query the status of a previous submission once.

        Returns:
            The status tool's raw output

        Raises:
            ConfigurationError: If credentials are missing
            FileError: If no submission recorded a request id
            ExternalToolError: If the query fails
        """
        self.validate(require_bundle_id=False)

        request_id_file = Path(request_id_file)
        if not request_id_file.is_file():
            raise FileError(
                f"Request ID file does not exist: {request_id_file}. "
                "Submit the artifact for notarization first."
            )
        request_id = request_id_file.read_text(encoding="utf-8")

        outputs: list[str] = []
        self.invoker.run(
            XCRUN,
            [
                "altool",
                "--notarization-info",
                request_id,
                "--username",
                self.apple_id,
                "--password",
                self.password,
            ],
            process_stdout=lambda out_file: outputs.append(
                out_file.read_text(encoding="utf-8", errors="replace")
            ),
        )
        return outputs[0]


# ----------------------------------------------------------------------------
# Config to domain objects


def _optional_path(value: object) -> Path | None:
    return Path(str(value)) if value else None


def package_spec_from_config(
    config: dict[str, object],
    target_format: TargetFormat,
    app_image: Pathlike | None = None,
) -> PackageSpec:
    """Build a PackageSpec from the [package] tables of the config.

    Raises:
        ConfigurationError: If package.name is missing
    """
    package = get_config_section(config, "package")
    name = package.get("name")
    if not name:
        raise ConfigurationError("package.name is required")

    linux = get_config_section(config, "package.linux")
    windows = get_config_section(config, "package.windows")
    macos = get_config_section(config, "package.macos")
    signing = get_config_section(config, "package.macos.signing")

    return PackageSpec(
        target_format=target_format,
        package_name=str(name),
        description=package.get("description"),
        version=package.get("version"),
        vendor=package.get("vendor"),
        copyright=package.get("copyright"),
        main_jar=_optional_path(package.get("main_jar")),
        main_class=package.get("main_class"),
        runtime_image=_optional_path(package.get("runtime_image")),
        app_image=_optional_path(app_image or package.get("app_image")),
        icon_file=_optional_path(package.get("icon")),
        license_file=_optional_path(package.get("license_file")),
        installation_path=package.get("install_dir"),
        launcher_args=list(package.get("launcher_args", [])),
        launcher_jvm_args=list(package.get("jvm_args", [])),
        free_args=list(package.get("free_args", [])),
        wix_toolset_dir=_optional_path(package.get("wix_toolset_dir")),
        linux=LinuxSettings(**{k: linux.get(k) for k in LinuxSettings.__dataclass_fields__}),
        windows=WindowsSettings(
            **{k: windows.get(k) for k in WindowsSettings.__dataclass_fields__}
        ),
        macos=MacOSSettings(
            package_name=macos.get("package_name"),
            bundle_id=macos.get("bundle_id"),
            signing=MacOSSigningSettings(
                sign=bool(signing.get("sign", False)),
                identity=signing.get("identity"),
                keychain=signing.get("keychain"),
                prefix=signing.get("prefix"),
            )
            if signing
            else None,
        ),
    )


# ----------------------------------------------------------------------------
# Command-line interface


def _format_choice(value: str) -> TargetFormat:
    try:
        return TargetFormat(value)
    except ValueError:
        choices = ", ".join(f.id for f in TargetFormat)
        raise argparse.ArgumentTypeError(
            f"invalid format '{value}' (choose from {choices})"
        ) from None


def _default_request_id_file(build_dir: Path, target_format: TargetFormat) -> Path:
    return build_dir / "notarization" / target_format.id / REQUEST_ID_FILE_NAME


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    """Add common options to a parser."""
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="path to config file (default: .nativepack.toml)",
    )
    parser.add_argument(
        "-b",
        "--build-dir",
        default=DEFAULT_BUILD_DIR,
        metavar="DIR",
        help=f"build directory for logs and staging (default: {DEFAULT_BUILD_DIR})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="enable verbose/debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="disable colored output",
    )


def _load_cli_config(args: argparse.Namespace) -> dict[str, object]:
    return load_config(Path(args.config) if args.config else None)


def _cmd_package(args: argparse.Namespace) -> None:
    """Handle 'package' subcommand."""
    setup_logging(args.verbose, not args.no_color)
    log = logging.getLogger("nativepack")

    config = _load_cli_config(args)
    spec = package_spec_from_config(config, args.format, app_image=args.app_image)
    build_dir = Path(args.build_dir)

    files = [Path(f) for f in get_config_value(config, "package", "files", [])]
    files.extend(Path(f) for f in args.files)

    dest = args.dest or get_config_value(
        config, "package", "dest", str(build_dir / "binaries" / args.format.id)
    )
    java_home = args.java_home or get_config_value(config, "package", "java_home")

    packager = NativePackager(
        spec,
        files=files,
        destination_dir=Path(dest),
        context=BuildContext(build_dir, f"package-{args.format.id}"),
        verbose=args.verbose,
        incremental=not args.full,
        java_home=java_home,
    )
    output = packager.process()
    log.info("Created: %s", output)


def _notarizer(args: argparse.Namespace, config: dict[str, object], task: str) -> Notarizer:
    invoker = ToolInvoker(
        BuildContext(Path(args.build_dir), task).logs_dir, verbose=args.verbose
    )
    bundle_id = (
        getattr(args, "bundle_id", None)
        or get_config_value(config, "notarization", "bundle_id")
        or get_config_value(config, "package.macos", "bundle_id")
    )
    return Notarizer(
        invoker,
        bundle_id=bundle_id,
        apple_id=args.apple_id or get_config_value(config, "notarization", "apple_id"),
        password=get_config_value(config, "notarization", "password"),
    )


def _cmd_notarize(args: argparse.Namespace) -> None:
    """Handle 'notarize' subcommand."""
    setup_logging(args.verbose, not args.no_color)
    log = logging.getLogger("nativepack")

    config = _load_cli_config(args)
    build_dir = Path(args.build_dir)
    input_dir = Path(args.input_dir or build_dir / "binaries" / args.format.id)
    request_id_file = Path(
        args.request_id_file or _default_request_id_file(build_dir, args.format)
    )

    notarizer = _notarizer(args, config, f"notarize-{args.format.id}")
    request_id = notarizer.submit(args.format, input_dir, request_id_file)
    log.info("Submitted: %s", request_id)


def _cmd_check_notarization(args: argparse.Namespace) -> None:
    """Handle 'check-notarization' subcommand."""
    setup_logging(args.verbose, not args.no_color)

    config = _load_cli_config(args)
    build_dir = Path(args.build_dir)
    request_id_file = Path(
        args.request_id_file or _default_request_id_file(build_dir, args.format)
    )

    notarizer = _notarizer(args, config, f"check-notarization-{args.format.id}")
    print(notarizer.check(request_id_file))


def _cmd_fingerprint(args: argparse.Namespace) -> None:
    """Handle 'fingerprint' subcommand."""
    setup_logging(args.verbose, not args.no_color)

    for archive in args.archives:
        path = Path(archive)
        if not jarutils.is_archive(path):
            raise FileError(f"Not a zip archive: {path}")
        print(f"{jarutils.content_fingerprint(path)}  {path}")


def main() -> None:
    """Command line interface for nativepack."""
    try:
        parser = argparse.ArgumentParser(
            prog="nativepack",
            description="Package applications with jpackage and notarize them.",
            epilog=(
                "Examples:\n"
                "  nativepack package --format deb\n"
                "  nativepack package --format dmg --app-image build/binaries/app-image/MyApp.app\n"
                "  nativepack notarize --format dmg\n"
                "  nativepack check-notarization --format dmg\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {__version__}",
        )

        subparsers = parser.add_subparsers(
            title="commands",
            dest="command",
            required=True,
        )

        # --- package subcommand ---
        package_parser = subparsers.add_parser(
            "package",
            help="stage inputs and build an app image or installer",
            description="Stage application files and run jpackage.",
            epilog=(
                "Examples:\n"
                "  nativepack package --format app-image\n"
                "  nativepack package --format msi --dest dist/\n"
                "  nativepack package --format deb extra.jar --full\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        package_parser.add_argument(
            "files",
            nargs="*",
            help="additional input files (added to package.files)",
        )
        package_parser.add_argument(
            "-f",
            "--format",
            required=True,
            type=_format_choice,
            help="target format: " + ", ".join(f.id for f in TargetFormat),
        )
        package_parser.add_argument(
            "-o",
            "--dest",
            metavar="DIR",
            help="output directory (default: <build-dir>/binaries/<format>)",
        )
        package_parser.add_argument(
            "--app-image",
            metavar="DIR",
            help="pre-built app image to wrap into an installer",
        )
        package_parser.add_argument(
            "--java-home",
            metavar="DIR",
            help="JDK providing jpackage (default: JAVA_HOME)",
        )
        package_parser.add_argument(
            "--full",
            action="store_true",
            help="rebuild the staging directory from scratch",
        )
        _add_common_options(package_parser)
        package_parser.set_defaults(func=_cmd_package)

        # --- notarize subcommand ---
        notarize_parser = subparsers.add_parser(
            "notarize",
            help="upload an installer for notarization",
            description=(
                "Upload the installer for Apple notarization and save the "
                "request id for a later status check."
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        notarize_parser.add_argument(
            "-f",
            "--format",
            required=True,
            type=_format_choice,
            help="format of the installer to upload (dmg or pkg)",
        )
        notarize_parser.add_argument(
            "-i",
            "--input-dir",
            metavar="DIR",
            help="directory holding the installer (default: <build-dir>/binaries/<format>)",
        )
        notarize_parser.add_argument(
            "-r",
            "--request-id-file",
            metavar="FILE",
            help="where to save the request id",
        )
        notarize_parser.add_argument(
            "--bundle-id",
            metavar="ID",
            help="primary bundle id (default: package.macos.bundle_id)",
        )
        notarize_parser.add_argument(
            "--apple-id",
            metavar="ID",
            help=f"Apple ID (or set {ENV_APPLE_ID} env var)",
        )
        _add_common_options(notarize_parser)
        notarize_parser.set_defaults(func=_cmd_notarize)

        # --- check-notarization subcommand ---
        check_parser = subparsers.add_parser(
            "check-notarization",
            help="query the status of a notarization request once",
            description="Print the notarization status for a saved request id.",
        )
        check_parser.add_argument(
            "-f",
            "--format",
            default=TargetFormat.DMG,
            type=_format_choice,
            help="format used when submitting (default: dmg)",
        )
        check_parser.add_argument(
            "-r",
            "--request-id-file",
            metavar="FILE",
            help="file holding the request id",
        )
        check_parser.add_argument(
            "--apple-id",
            metavar="ID",
            help=f"Apple ID (or set {ENV_APPLE_ID} env var)",
        )
        _add_common_options(check_parser)
        check_parser.set_defaults(func=_cmd_check_notarization)

        # --- fingerprint subcommand ---
        fingerprint_parser = subparsers.add_parser(
            "fingerprint",
            help="print order-independent fingerprints of jar/zip archives",
            description="Print content fingerprints of archives.",
        )
        fingerprint_parser.add_argument(
            "archives",
            nargs="+",
            help="jar or zip files",
        )
        fingerprint_parser.add_argument(
            "--verbose",
            action="store_true",
            help="enable verbose/debug logging",
        )
        fingerprint_parser.add_argument(
            "--no-color",
            action="store_true",
            help="disable colored output",
        )
        fingerprint_parser.set_defaults(func=_cmd_fingerprint)

        args = parser.parse_args()
        args.func(args)

    except NativePackError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logging.error("Unexpected error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
