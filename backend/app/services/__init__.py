# Services module

from app.services.quota_ledger import (
    QuotaLedger,
    QuotaReadPolicy,
    CreditDecision,
    remaining_credits,
    MAX_DAILY_CREDITS,
)

from app.services.comic_generator import (
    GenerationOrchestrator,
    GenerationSession,
    GenerationOutcome,
    OutcomeStatus,
    SessionState,
    sessions,
)
