"""Constants for the bundle reconciler."""

# Directory inside every bundle that holds reconciler state
MANIFEST_DIR_NAME = ".bundle-reconciler"

MANIFEST_FILENAME = "manifest.json"
DETECTION_SNAPSHOT_FILENAME = "detected-snapshot.json"
PROMPT_SNAPSHOT_FILENAME = "prompt-version.md"
HISTORY_DIR_NAME = "history"
STAGING_DIR_NAME = "staging"
LOCK_FILENAME = "lock"

# Where the generator is asked to write its detection summary
DETECTION_SOURCE = "config/detected.json"

UPDATE_REPORT_FILENAME = "UPDATE_REPORT.md"

MANIFEST_SCHEMA_VERSION = "1.0.0"

# Sibling suffixes written by the conflict resolver
NEW_SUFFIX = ".new"
BACKUP_SUFFIX = ".bak"
DIFF_SUFFIX = ".diff"

# Never tracked in the manifest, never removed when cleaning for a retry
VCS_DIR_NAMES = (".git",)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_HISTORY_KEEP = 10
DEFAULT_ENVIRONMENTS = ["dev", "staging", "prod"]
VALID_ENVIRONMENTS = ("dev", "staging", "prod")

DEFAULT_GENERATOR_CMD = "claude"
DEFAULT_RUNS_DIR = "runs"

# Prompt handed to the generator, relative to the working directory
DEFAULT_PROMPT_FILE = "prompts/BUNDLE_PROMPT.md"
