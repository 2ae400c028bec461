"""Resilient seeding of a multi-tenant ledger platform with test data."""

__version__ = "0.1.0"
