"""Roster reconciliation engine shared by the four trackers."""
