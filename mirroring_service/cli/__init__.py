"""
CLI command modules registered on the main click group.
"""
