"""Moderation package integration helpers exposed to the application."""

from forum.moderation.domain.container import configure, configure_postgres, get_moderation_actions

__all__ = ["configure", "configure_postgres", "get_moderation_actions"]
