"""Lodestar timing and retry constants.

Single source of truth for the delays and attempt budgets used by the
operation engine, the refresh triggers and the remote change poller.
"""

from __future__ import annotations

# =============================================================================
# Retry policy
# =============================================================================

#: Base of the quadratic backoff for a locked working copy (seconds).
#: Attempt ``n`` waits ``n**2 * LOCK_BACKOFF_BASE_SECONDS``.
LOCK_BACKOFF_BASE_SECONDS: float = 0.05

#: Highest attempt number after which a lock error is still retried.
MAX_LOCK_RETRIES: int = 10

#: Interactive credential prompts allowed once stored credentials run out.
MAX_AUTH_PROMPTS: int = 3

#: Prefix of the secret store key credentials are saved under.
CREDENTIAL_KEY_PREFIX: str = "lodestar.svn"

# =============================================================================
# Triggers
# =============================================================================

#: Quiet period before a burst of filesystem events triggers a refresh.
FS_CHANGE_DEBOUNCE_SECONDS: float = 1.0

#: Quiet period before deleted files are reconciled against status.
DELETED_FILES_DEBOUNCE_SECONDS: float = 1.0

#: Quiet period before a remote change check actually runs.
REMOTE_CHANGES_DEBOUNCE_SECONDS: float = 1.0

#: Delay after an idle-triggered refresh before another may start.
SETTLE_DELAY_SECONDS: float = 5.0

#: Default interval between remote change checks (0 disables polling).
DEFAULT_REMOTE_CHECK_FREQUENCY_SECONDS: int = 300

# =============================================================================
# Working copy layout
# =============================================================================

#: Administrative directory of an svn working copy.
SVN_ADMIN_DIR: str = ".svn"

#: Scratch area svn rewrites constantly during operations.
SVN_TMP_DIR: str = "tmp"

#: Sequentialization key shared by every repository's status pass.
UPDATE_MODEL_STATE_KEY: str = "update_model_state"
