"""Shared helpers for watchbudget."""
