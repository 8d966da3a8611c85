"""Subscription access gating and Discord guild membership reconciliation."""
