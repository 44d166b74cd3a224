"""Core domain package for feedsieve.

Core contains condition evaluation, rule matching and action execution
without any storage- or delivery-specific code, keeping the business logic
portable.
"""
