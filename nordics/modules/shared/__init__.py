"""
Shared building blocks for domain modules: entity identity, domain
exceptions, and the service/repository base classes.
"""
