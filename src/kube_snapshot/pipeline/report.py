"""Markdown templates for cycle reports."""

REPORT_HEADER = """
# Cluster Snapshot
"""

REPORT_SECTION_CAPTURE = """
## Capture
Captured at **{timestamp}** ({total} resources).
"""

REPORT_SECTION_PUBLISHED = """
## Delivery
Published to `{topic}` partition {partition} at offset {offset} ({size} bytes).
"""

REPORT_SECTION_STORED = """
## Delivery
Stored directly as snapshot **{snapshot_id}**.
"""

REPORT_SECTION_RETENTION = """
## Retention
Deleted {deleted} snapshots; {total} remain.

**Oldest:** {oldest}

**Newest:** {newest}
"""
