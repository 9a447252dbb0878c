"""
Version 1 routers: usage and system.
"""
