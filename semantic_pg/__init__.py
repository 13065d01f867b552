"""
semantic-pg: natural-language questions to SQL over PostgreSQL with pgvector.
"""

__version__ = '0.1.0'
