"""Subscription billing backend for the grant-application assistant."""
