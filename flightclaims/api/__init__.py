"""
API package
"""
