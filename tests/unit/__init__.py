"""Unit tests for the Callable Primitive System.

Fast, isolated tests for individual components.
No network (HTTP is mocked); filesystem only in temporary directories.
"""
