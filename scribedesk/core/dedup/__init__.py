"""
Duplicate detection and retention policy engine.

Pure functions over record snapshots:
- grouper: checksum -> records, duplicate groups (size >= 2)
- classifier: labels each group member Protected / TooRecent / NewestKept / Deletable
- reporter: summary statistics, priorities and recommendations
- export: CSV / JSON / Markdown / zip bundle
"""
