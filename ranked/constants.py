"""
Engine-wide constants for the Ranked Match Rating Engine.

This module contains the fixed values shared by the cascade, the read APIs
and the command line, so they are declared once.
"""

class ScopeLevel:
    """Names of the three ranking scope levels."""

    GLOBAL = "global"
    COMPETITION = "competition"
    SEASON = "season"

    # Cascade order: global first, then competition, then season
    ORDERED = (GLOBAL, COMPETITION, SEASON)

class MultiplierConstants:
    """Global scope multipliers by match origin."""

    VERIFIED_COMPETITION = 1.0    # Competition run by a verified organization
    UNVERIFIED_COMPETITION = 0.3  # Competition without verification
    PLAZA_OFFICIAL = 0.5          # Pickup match validated by a principal official
    PLAZA = 0.3                   # Pickup match confirmed by captains only

    # Non-global scopes always count in full
    DEFAULT = 1.0

class AuditActions:
    """Action types written to the rating audit log."""

    REVERT = "match_revert"
    RECOMPUTE = "scope_recompute"
    RESET_SCOPE = "scope_reset"
    BULK_DELETE = "rating_bulk_delete"

class StorageKeyConstants:
    """Canonical storage key formatting for scopes."""

    # Placeholder for an absent competition/season in the storage key
    WILDCARD = "*"
    SEPARATOR = ":"
