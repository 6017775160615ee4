"""Ballot box: one voter, one vote, ranked results."""

__version__ = '1.0.0'
