"""Publisher factory keyed by blog platform."""

from keyword_scheduler.integrations.base import BlogPublisher
from keyword_scheduler.integrations.hatena import HatenaPublisher
from keyword_scheduler.integrations.wordpress import WordpressPublisher
from keyword_scheduler.schemas.settings import HatenaTarget, WordpressTarget
from keyword_scheduler.services.errors import UnsupportedPlatformError


def create_publisher(target: WordpressTarget | HatenaTarget) -> BlogPublisher:
    """Build the publisher for a configured blog target.

    Raises:
        UnsupportedPlatformError: If the platform has no publisher.
    """
    if isinstance(target, WordpressTarget):
        return WordpressPublisher(target)
    if isinstance(target, HatenaTarget):
        return HatenaPublisher(target)
    raise UnsupportedPlatformError(getattr(target, "platform", type(target).__name__))
