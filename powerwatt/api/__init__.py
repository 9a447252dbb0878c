"""
Query API routers.
"""
