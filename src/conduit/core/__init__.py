"""Core building blocks: errors, logging, settings, cache backends, adapters."""
