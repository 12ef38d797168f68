"""Outbound room notifications."""

from polymind.infrastructure.notify.redis_notifier import RedisNotifier

__all__ = ["RedisNotifier"]
