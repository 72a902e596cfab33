"""
Shared building blocks: record types, error taxonomy, geo helpers, config and logging.
"""
