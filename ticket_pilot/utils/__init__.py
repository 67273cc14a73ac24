"""Utility modules for ticket-pilot."""
