"""
Knowledge graph storage, analytics and traversal.

This package holds the entity/relationship data model, the stores that
disambiguate and validate candidates, clustering and statistics, the
traversal query engine, and the manager that orchestrates them.
"""
