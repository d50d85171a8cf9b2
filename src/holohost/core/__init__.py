"""Core domain: models, errors, interfaces and credential security."""
