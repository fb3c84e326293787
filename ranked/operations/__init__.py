"""
Operations Layer

This package composes database primitives into the rating engine's
multi-step workflows. Operations handle scope locking, transactions,
validation and audit logging.

Architecture:
- Database layer: Models, sessions and match applied-state primitives
- Operations layer: Cascade, revert, recompute and administrative commands
- Service layer: Facade and cached read APIs

Each operations module focuses on a specific workflow:
- RatingOperations: Applying a finalized match to its scopes
- AdminOperations: Revert, recompute, reset and bulk delete
"""
