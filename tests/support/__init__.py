"""Test doubles and data factories."""
