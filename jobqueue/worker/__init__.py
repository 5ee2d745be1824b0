"""
Worker process and job handlers.
"""
