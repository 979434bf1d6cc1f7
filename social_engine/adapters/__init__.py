"""Platform adapters behind one ``publish`` contract, keyed by platform."""

from typing import Dict, Mapping, Optional, Type

from social_engine.adapters.base import PlatformAdapter
from social_engine.adapters.facebook import FacebookAdapter
from social_engine.adapters.instagram import InstagramAdapter
from social_engine.adapters.linkedin import LinkedInAdapter
from social_engine.adapters.tiktok import TikTokAdapter
from social_engine.adapters.twitter import TwitterAdapter
from social_engine.adapters.youtube import YouTubeAdapter
from social_engine.models import Platform

ADAPTERS: Dict[Platform, Type[PlatformAdapter]] = {
    Platform.YOUTUBE: YouTubeAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
    Platform.TIKTOK: TikTokAdapter,
    Platform.FACEBOOK: FacebookAdapter,
    Platform.TWITTER: TwitterAdapter,
    Platform.LINKEDIN: LinkedInAdapter,
}


def get_adapter_class(
    platform: Platform,
    registry: Optional[Mapping[Platform, Type[PlatformAdapter]]] = None,
) -> Type[PlatformAdapter]:
    """Look up the adapter class for *platform* in *registry* (default :data:`ADAPTERS`)."""
    registry = ADAPTERS if registry is None else registry
    try:
        return registry[platform]
    except KeyError:
        raise ValueError(f"No adapter registered for platform {platform!r}") from None


__all__ = [
    "ADAPTERS",
    "get_adapter_class",
    "PlatformAdapter",
    "YouTubeAdapter",
    "InstagramAdapter",
    "TikTokAdapter",
    "FacebookAdapter",
    "TwitterAdapter",
    "LinkedInAdapter",
]
