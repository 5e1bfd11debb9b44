"""Trigger module - push notifications from webhooks or polling."""

from shipline.trigger.listener import TriggerListener

__all__ = ["TriggerListener"]
