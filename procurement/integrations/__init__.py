"""Adapters for the services the workflow talks to but does not own."""
from .cart_dispatcher import CartDispatcher, CartDispatchResult, HttpCartDispatcher
from .dispatch_runner import CartDispatchRunner
from .metadata import HttpMetadataExtractor, MetadataExtractor, ProductMetadata
