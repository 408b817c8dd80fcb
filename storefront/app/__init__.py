"""Storefront FastAPI application."""
