"""Thesis-Sync realtime coordination service."""
