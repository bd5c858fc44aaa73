"""Session protocol constants: status values, error kinds and signal types.

Pure data module -- no imports, no logic. Safe to import from any quizsync
module without risk of circular dependencies.
"""

# ── Session / participant / attempt status ────────────────────────────

SESSION_WAITING = "WAITING"
SESSION_ACTIVE = "ACTIVE"
SESSION_COMPLETED = "COMPLETED"

# Ordering used to detect regressing (stale) snapshots.
SESSION_STATUS_RANK = {
    SESSION_WAITING: 0,
    SESSION_ACTIVE: 1,
    SESSION_COMPLETED: 2,
}

PARTICIPANT_JOINED = "JOINED"
PARTICIPANT_READY = "READY"

ATTEMPT_IN_PROGRESS = "IN_PROGRESS"
ATTEMPT_SUBMITTED = "SUBMITTED"

# ── Error kinds (machine-readable, carried by SessionApiError) ────────

ERR_TRANSIENT = "TRANSIENT"
ERR_NOT_FOUND = "NOT_FOUND"
ERR_NOT_A_PARTICIPANT = "NOT_A_PARTICIPANT"
ERR_ALREADY_JOINED = "ALREADY_JOINED"
ERR_NOT_JOINABLE = "NOT_JOINABLE"
ERR_ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
ERR_UNAUTHORIZED = "UNAUTHORIZED"
ERR_OTHER = "OTHER"

ERROR_KINDS = frozenset({
    ERR_TRANSIENT,
    ERR_NOT_FOUND,
    ERR_NOT_A_PARTICIPANT,
    ERR_ALREADY_JOINED,
    ERR_NOT_JOINABLE,
    ERR_ALREADY_SUBMITTED,
    ERR_UNAUTHORIZED,
    ERR_OTHER,
})

# ── Submission triggers ───────────────────────────────────────────────

SUBMIT_MANUAL = "MANUAL"
SUBMIT_EXPIRY = "EXPIRY"

# ── Reconciler -> controller signal types ─────────────────────────────

SIG_NAVIGATE_ACTIVE = "navigate_active"
SIG_NAVIGATE_RESULT = "navigate_result"
SIG_AUTO_SUBMIT = "auto_submit"
SIG_RECOVER = "recover"
SIG_STOP_POLLING = "stop_polling"
SIG_ERROR = "error"

# ── Recovery outcomes ─────────────────────────────────────────────────

RECOVERY_JOINED = "joined"
RECOVERY_SKIPPED = "skipped"
RECOVERY_LOOKUP_FAILED = "lookup_failed"
RECOVERY_NOT_LISTED = "not_listed"
RECOVERY_NOT_JOINABLE = "not_joinable"
RECOVERY_JOIN_FAILED = "join_failed"
RECOVERY_REFETCH_FAILED = "refetch_failed"
