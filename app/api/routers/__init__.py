"""
FastAPI routers for organizing API endpoints.

This package contains modular routers that split the monolithic main.py
into manageable, domain-specific modules following FastAPI best practices.
"""
