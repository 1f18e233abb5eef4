"""HTTP surface for imgscout: probe, one-shot inspection, remote fetch, viewer sessions."""
