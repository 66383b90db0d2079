"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Database connection management
- Deferred task queue
- Organization membership directory
"""
