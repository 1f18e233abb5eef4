"""imgscout models package.

Defines the shared data contracts used across the pipeline and the HTTP surface:

  - candidate.py — Candidate (a discovered image span with provenance)
  - view.py      — SessionStatus, ViewState, RenderedImage (visible session state)
  - responses.py — JSON payload builders for the HTTP surface
"""
