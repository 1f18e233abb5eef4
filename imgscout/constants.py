"""Shared constants for imgscout.

All size limits and numeric caps used across modules are defined here.
No magic numbers in other modules — import from here.
"""

# ─── Extraction Caps ─────────────────────────────────────────────────────────

# Maximum number of candidates returned by one extraction.
# Strategies short-circuit as soon as this many candidates have been accepted.
MAX_EXTRACTED_IMAGES: int = 24

# Only the first 2 MiB of a body are scanned as text (data URIs, embedded base64).
MAX_TEXT_SCAN_BYTES: int = 2 * 1024 * 1024  # 2 MiB

# Per-candidate ceiling. Any decoded span larger than this is rejected.
MAX_DECODED_IMAGE_BYTES: int = 8 * 1024 * 1024  # 8 MiB

# ─── Pattern Thresholds ──────────────────────────────────────────────────────

# Minimum base64 run for a bare (marker-less) embedded blob.
MIN_EMBEDDED_BASE64_LENGTH: int = 96

# Minimum payload length after ``data:image/<subtype>;base64,``.
MIN_DATA_URI_BASE64_LENGTH: int = 32

# Minimum payload length after ``data:image/<subtype>,`` (percent-encoded form).
MIN_DATA_URI_RAW_LENGTH: int = 16

# ─── Text Heuristics ─────────────────────────────────────────────────────────

# Number of leading bytes inspected by is_likely_text().
TEXT_SAMPLE_BYTES: int = 1024

# Window scanned by the cheap embedded-marker quick check.
QUICK_CHECK_SCAN_BYTES: int = 256 * 1024  # 256 KiB

# ─── Decompression ───────────────────────────────────────────────────────────

# Inflated-size ceiling for gzip/deflate bodies. Exceeding it raises DecodeError.
MAX_INFLATED_BYTES: int = 64 * 1024 * 1024  # 64 MiB

# Chunk size handed to zlib per decompress() call while enforcing the ceiling.
INFLATE_CHUNK_BYTES: int = 64 * 1024

# ─── Worker ──────────────────────────────────────────────────────────────────

# Global safety-net timeout for one scan (decompress + extract + render).
DEFAULT_SCAN_TIMEOUT_S: float = 30.0

# Scans slower than this are logged at WARNING.
DEFAULT_SLOW_SCAN_MS: float = 500.0

# ─── HTTP Surface ────────────────────────────────────────────────────────────

# Maximum request body accepted by the HTTP surface (HTTP 413 above this).
MAX_REQUEST_BODY_BYTES: int = 32 * 1024 * 1024  # 32 MiB

# Maximum raw body read from a fetched URL.
MAX_FETCH_BODY_BYTES: int = 32 * 1024 * 1024  # 32 MiB

# Timeout for fetching a remote URL (seconds).
DEFAULT_FETCH_TIMEOUT_S: float = 15.0
