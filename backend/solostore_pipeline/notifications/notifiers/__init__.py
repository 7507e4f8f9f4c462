from .discord import DiscordNotifier
from .aws_sns import AwsSnsNotifier

__all__ = ["DiscordNotifier", "AwsSnsNotifier"]
