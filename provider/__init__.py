from provider.client import ProviderClient, ProviderResult
from provider.event_types import EventTypeResolver
from provider.null_client import NullProviderClient

__all__ = ['ProviderClient', 'ProviderResult', 'NullProviderClient', 'EventTypeResolver']
