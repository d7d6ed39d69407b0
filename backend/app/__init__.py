"""Thesis-Sync realtime backend application."""
