"""Donation tracker application package."""
