"""
Shared utilities: exceptions, logging, validation, hashing.
"""
