"""Durable JSON storage for stacks and their run history."""
