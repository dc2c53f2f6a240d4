"""Nostr client bookkeeping: people, relay picking, subscriptions, relay messages and settings."""

__version__ = "0.1.0"