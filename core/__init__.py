"""Core domain logic for glove-based neuropathy screening.

This package contains the business logic and domain models,
isolated from the web layer for easy testing and reasoning.
"""
