"""Core payment creation and reconciliation logic."""
