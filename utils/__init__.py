"""Shared utilities: configuration, logging, HTTP, messaging, storage and schemas."""
