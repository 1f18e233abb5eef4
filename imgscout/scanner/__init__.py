"""imgscout scanner package.

Provides the extraction pipeline: content-encoding normalization, magic-number
sniffing, multi-strategy embedded-image discovery with fingerprint dedup, and
the scan coordinator that runs it off the interactive path.
"""
