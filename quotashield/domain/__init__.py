"""Domain Layer: models, errors, events and interfaces (ports).

Has no dependency on the infrastructure layer.
"""
