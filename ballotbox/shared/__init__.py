"""
Shared models for the ballot box service.

This package contains common code used across the service:
- Session value object and result types
- Outcome enums (login, registration, vote)
- Small normalisation helpers
"""

from .models import (
    User,
    Candidate,
    Session,
    LoginOutcome,
    LoginResult,
    VoteOutcome,
    VoteReceipt,
    CastResult,
    RegistrationOutcome,
    RegistrationResult,
    ResultEntry,
    RankedResult,
    utc_now,
    normalize_email,
    names_match,
)

__all__ = [
    'User',
    'Candidate',
    'Session',
    'LoginOutcome',
    'LoginResult',
    'VoteOutcome',
    'VoteReceipt',
    'CastResult',
    'RegistrationOutcome',
    'RegistrationResult',
    'ResultEntry',
    'RankedResult',
    'utc_now',
    'normalize_email',
    'names_match',
]
