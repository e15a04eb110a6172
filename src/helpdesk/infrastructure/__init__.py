"""
Infrastructure Layer
=====================

Technical concerns shared by all modules:
- Database connection management
"""
