"""
Content enrichment against a built knowledge graph.

Finds known entities in free text, surfaces the graph relationships between
them, recommends related concepts and flags knowledge gaps.
"""
