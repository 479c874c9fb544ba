"""Default configuration values and starter config.toml template."""

DEFAULT_TOML = """\
# Repomon configuration
version = "1.0"

[watch]
content_debounce_ms = 400    # quiet period after working-tree edits
metadata_debounce_ms = 800   # quiet period after commits, merges, checkouts
stabilization_ms = 300       # let in-progress writes finish before reading
# extra_ignore = ["*.log", "coverage/"]

[git]
timeout_s = 10
diff_algorithm = "histogram"  # myers | minimal | patience | histogram
max_file_kb = 1024

[store]
# path = "/path/to/repomon-config.json"   # default: platform config dir

[log]
level = "WARNING"             # DEBUG | INFO | WARNING | ERROR
"""
