"""Config loading for imgscout.

Reads `.imgscout/config.yaml` (or `~/.imgscout/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or invalid limits.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. IMGSCOUT_CONFIG environment variable (if set)
  3. `.imgscout/config.yaml` (working directory — for development)
  4. `~/.imgscout/config.yaml` (home directory — for deployments)

Environment variable overrides:
  IMGSCOUT_PORT — overrides server.port (takes precedence over config file value)
  IMGSCOUT_CONFIG — sets an explicit config file path to try first
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from imgscout.constants import (
    DEFAULT_FETCH_TIMEOUT_S,
    DEFAULT_SCAN_TIMEOUT_S,
    DEFAULT_SLOW_SCAN_MS,
    MAX_DECODED_IMAGE_BYTES,
    MAX_EXTRACTED_IMAGES,
    MAX_FETCH_BODY_BYTES,
    MAX_INFLATED_BYTES,
    MAX_REQUEST_BODY_BYTES,
    MAX_TEXT_SCAN_BYTES,
    MIN_DATA_URI_BASE64_LENGTH,
    MIN_DATA_URI_RAW_LENGTH,
    MIN_EMBEDDED_BASE64_LENGTH,
)
from imgscout.scanner.definitions import MAX_PATTERN_REPEAT, ExtractionLimits
from imgscout.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# Default config search paths (IMGSCOUT_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".imgscout/config.yaml",
    os.path.expanduser("~/.imgscout/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ExtractorConfig:
    """Candidate extractor limits."""

    max_candidates: int = MAX_EXTRACTED_IMAGES
    max_text_scan_bytes: int = MAX_TEXT_SCAN_BYTES
    max_decoded_image_bytes: int = MAX_DECODED_IMAGE_BYTES
    min_data_uri_base64_length: int = MIN_DATA_URI_BASE64_LENGTH
    min_data_uri_raw_length: int = MIN_DATA_URI_RAW_LENGTH
    min_embedded_base64_length: int = MIN_EMBEDDED_BASE64_LENGTH


@dataclass
class DecoderConfig:
    """Content-encoding decoder limits."""

    max_inflated_bytes: int = MAX_INFLATED_BYTES


@dataclass
class WorkerConfig:
    """Scan worker timing."""

    scan_timeout_s: float = DEFAULT_SCAN_TIMEOUT_S
    slow_scan_ms: float = DEFAULT_SLOW_SCAN_MS
    max_sessions: int = 256


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 4343
    max_request_body_bytes: int = MAX_REQUEST_BODY_BYTES


@dataclass
class FetchConfig:
    """Remote fetch (``/v1/inspect/fetch``) configuration."""

    timeout_s: float = DEFAULT_FETCH_TIMEOUT_S
    max_body_bytes: int = MAX_FETCH_BODY_BYTES


@dataclass
class Config:
    """Root configuration object populated from .imgscout/config.yaml.

    All fields have safe defaults — imgscout can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On a non-positive limit or a pattern length RE2 cannot compile.
        """
        # ── Extractor ─────────────────────────────────────────────────────────
        extractor_raw = _section(raw, "extractor")
        extractor = ExtractorConfig(
            max_candidates=extractor_raw.get("max_candidates", MAX_EXTRACTED_IMAGES),
            max_text_scan_bytes=extractor_raw.get("max_text_scan_bytes", MAX_TEXT_SCAN_BYTES),
            max_decoded_image_bytes=extractor_raw.get(
                "max_decoded_image_bytes", MAX_DECODED_IMAGE_BYTES
            ),
            min_data_uri_base64_length=extractor_raw.get(
                "min_data_uri_base64_length", MIN_DATA_URI_BASE64_LENGTH
            ),
            min_data_uri_raw_length=extractor_raw.get(
                "min_data_uri_raw_length", MIN_DATA_URI_RAW_LENGTH
            ),
            min_embedded_base64_length=extractor_raw.get(
                "min_embedded_base64_length", MIN_EMBEDDED_BASE64_LENGTH
            ),
        )
        for name in (
            "max_candidates",
            "max_text_scan_bytes",
            "max_decoded_image_bytes",
            "min_data_uri_base64_length",
            "min_data_uri_raw_length",
            "min_embedded_base64_length",
        ):
            _require_positive_int(f"extractor.{name}", getattr(extractor, name))
        for name in (
            "min_data_uri_base64_length",
            "min_data_uri_raw_length",
            "min_embedded_base64_length",
        ):
            if getattr(extractor, name) > MAX_PATTERN_REPEAT:
                _fail(
                    f"CONFIG ERROR: extractor.{name} must be at most {MAX_PATTERN_REPEAT} "
                    f"(got {getattr(extractor, name)})."
                )

        # ── Decoder ───────────────────────────────────────────────────────────
        decoder_raw = _section(raw, "decoder")
        decoder = DecoderConfig(
            max_inflated_bytes=decoder_raw.get("max_inflated_bytes", MAX_INFLATED_BYTES),
        )
        _require_positive_int("decoder.max_inflated_bytes", decoder.max_inflated_bytes)

        # ── Worker ────────────────────────────────────────────────────────────
        worker_raw = _section(raw, "worker")
        worker = WorkerConfig(
            scan_timeout_s=worker_raw.get("scan_timeout_s", DEFAULT_SCAN_TIMEOUT_S),
            slow_scan_ms=worker_raw.get("slow_scan_ms", DEFAULT_SLOW_SCAN_MS),
            max_sessions=worker_raw.get("max_sessions", 256),
        )
        _require_positive_number("worker.scan_timeout_s", worker.scan_timeout_s)
        _require_positive_number("worker.slow_scan_ms", worker.slow_scan_ms)
        _require_positive_int("worker.max_sessions", worker.max_sessions)

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = _section(raw, "server")
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 4343),
            max_request_body_bytes=server_raw.get(
                "max_request_body_bytes", MAX_REQUEST_BODY_BYTES
            ),
        )
        _require_positive_int("server.max_request_body_bytes", server.max_request_body_bytes)

        # ── Fetch ─────────────────────────────────────────────────────────────
        fetch_raw = _section(raw, "fetch")
        fetch = FetchConfig(
            timeout_s=fetch_raw.get("timeout_s", DEFAULT_FETCH_TIMEOUT_S),
            max_body_bytes=fetch_raw.get("max_body_bytes", MAX_FETCH_BODY_BYTES),
        )
        _require_positive_number("fetch.timeout_s", fetch.timeout_s)
        _require_positive_int("fetch.max_body_bytes", fetch.max_body_bytes)

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            extractor=extractor,
            decoder=decoder,
            worker=worker,
            server=server,
            fetch=fetch,
            path=path,
        )

    def limits(self) -> ExtractionLimits:
        """The immutable limits handed to every scan."""
        return ExtractionLimits(
            max_candidates=self.extractor.max_candidates,
            max_text_scan_bytes=self.extractor.max_text_scan_bytes,
            max_decoded_image_bytes=self.extractor.max_decoded_image_bytes,
            min_data_uri_base64_length=self.extractor.min_data_uri_base64_length,
            min_data_uri_raw_length=self.extractor.min_data_uri_raw_length,
            min_embedded_base64_length=self.extractor.min_embedded_base64_length,
            max_inflated_bytes=self.decoder.max_inflated_bytes,
        )


# ─── Validation helpers ───────────────────────────────────────────────────────


def _fail(msg: str) -> None:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        _fail(f"CONFIG ERROR: '{name}' must be a mapping.")
    return value


def _require_positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        _fail(f"CONFIG ERROR: {name} must be a positive integer (got {value!r}).")


def _require_positive_number(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        _fail(f"CONFIG ERROR: {name} must be a positive number (got {value!r}).")


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate imgscout configuration.

    Search order:
      1. ``config_path`` argument (if provided)
      2. ``IMGSCOUT_CONFIG`` environment variable (if set)
      3. ``.imgscout/config.yaml``
      4. ``~/.imgscout/config.yaml``

    If no file is found at any of these paths, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).

    After loading (or defaulting), ``IMGSCOUT_PORT`` env var is applied as an override
    to ``config.server.port`` regardless of whether a config file was found.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid limits, or invalid ``IMGSCOUT_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("IMGSCOUT_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "imgscout refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: imgscout is configured to bind on 0.0.0.0 (all interfaces). "
            "Anyone who can reach the port can submit bodies and fetch URLs through it. "
            "Recommended: use server.host: '127.0.0.1' for local-only access."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        max_candidates=config.extractor.max_candidates,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Currently handles:
      IMGSCOUT_PORT — overrides config.server.port (integer; raises SystemExit(1) if invalid)
    """
    env_port = os.environ.get("IMGSCOUT_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(
                f"CONFIG ERROR: IMGSCOUT_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )
