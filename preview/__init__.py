"""Building blocks of the markdown preview server."""

from .broadcast_hub import BroadcastHub, ChangeEvent, ChangeKind, Subscription
from .config import AppConfig, FeatureFlags
from .content_resolver import ContentResolver
from .reload_channel import EventStreamChannel, ReloadChannel
from .renderer import render_markdown
from .template_handler import AssetStore, RenderedDocument, TemplateHandler
from .watcher import start_watching

__all__ = [
    'AppConfig',
    'AssetStore',
    'BroadcastHub',
    'ChangeEvent',
    'ChangeKind',
    'ContentResolver',
    'EventStreamChannel',
    'FeatureFlags',
    'ReloadChannel',
    'RenderedDocument',
    'Subscription',
    'TemplateHandler',
    'render_markdown',
    'start_watching',
]
