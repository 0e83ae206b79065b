"""
Shared configuration, logging, error and locking helpers.
"""
