"""Credential hashing and account workflows."""
