"""
Core utilities — error taxonomy and cross-cutting concerns shared by the
extraction pipeline, the scanner and the API server.
"""
