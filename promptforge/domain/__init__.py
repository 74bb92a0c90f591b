"""Domain Layer: models, error taxonomy, ports and events.

Has no dependency on the infrastructure or core layers.
"""
