"""Library Loans API - Services Package

This package contains service modules for external integrations:
- Google Books catalog proxy
- Shared HTTP client
- Upload storage for cover and profile images
"""
