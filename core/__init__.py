"""Shared models, configuration, errors and events for the biosignal resolver."""
