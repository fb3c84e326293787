"""
Ranked Match Rating Engine.

Maintains per-scope Elo ratings for team matches, with exact revert and
replay of every rating change.
"""
