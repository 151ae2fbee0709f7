# farmsync/__init__.py
"""
FarmSync - backend de synchronisation hors-ligne multi-tenant pour la
gestion d'élevages porcins.
"""

__version__ = "1.0.0"
