"""Billing closure FastAPI application package."""
