"""
Prometheus metrics for authentication and membership policy.

Exposes metrics for:
- Passkey ceremony outcomes (by ceremony and outcome)
- Signature counter replay rejections
- Sessions issued / invalidated
- Membership policy rejections (by reason)

Metrics are exported at the /metrics endpoint.
"""

import logging

from prometheus_client import Counter

logger = logging.getLogger(__name__)


# ============================================================================
# Passkey Ceremony Metrics
# ============================================================================

passkey_ceremonies_total = Counter(
    'passkey_ceremonies_total',
    'Passkey ceremonies by ceremony type and outcome',
    ['ceremony', 'outcome']  # ceremony: registration|authentication
)

passkey_replay_rejections_total = Counter(
    'passkey_replay_rejections_total',
    'Authentication attempts rejected for a non-increasing signature counter'
)

# ============================================================================
# Session Metrics
# ============================================================================

sessions_issued_total = Counter(
    'sessions_issued_total',
    'Sessions issued after a verified ceremony'
)

sessions_invalidated_total = Counter(
    'sessions_invalidated_total',
    'Sessions invalidated explicitly (logout, revocation)'
)

# ============================================================================
# Membership Policy Metrics
# ============================================================================

membership_policy_rejections_total = Counter(
    'membership_policy_rejections_total',
    'Membership mutations rejected by policy',
    ['reason']  # last_owner, hierarchy, capability
)


def record_ceremony(ceremony: str, outcome: str) -> None:
    """
    Record a ceremony outcome.
    
    Args:
        ceremony: "registration" or "authentication"
        outcome: "verified", "failed", "challenge_error", "replay", "mismatch", "not_found"
    """
    passkey_ceremonies_total.labels(ceremony=ceremony, outcome=outcome).inc()


def record_policy_rejection(reason: str) -> None:
    """Record a membership policy rejection."""
    membership_policy_rejections_total.labels(reason=reason).inc()
