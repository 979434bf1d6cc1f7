"""Social publishing and scheduling engine.

Publishes scheduled posts to YouTube, Instagram, TikTok, Facebook, Twitter
and LinkedIn, keeps the OAuth credentials behind them valid, and suggests
posting times from historical engagement.
"""

__version__ = "0.1.0"
