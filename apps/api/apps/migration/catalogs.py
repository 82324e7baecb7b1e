"""
Static catalogs used by importers.

Catalog content lives in settings so clinics can extend the accepted
spellings without code changes.
"""
import unicodedata

from django.conf import settings

from apps.finance.models import PaymentMethodChoices


def fold(text):
    """Lower-case and strip accents: 'Cartão de Crédito' -> 'cartao de credito'."""
    normalized = unicodedata.normalize('NFKD', str(text).strip().lower())
    return ''.join(ch for ch in normalized if not unicodedata.combining(ch))


def build_alias_index(catalog):
    """Map every folded spelling (and the code itself) to its canonical code."""
    index = {}
    for code, aliases in catalog.items():
        index[fold(code)] = code
        index[fold(code.replace('_', ' '))] = code
        for alias in aliases:
            index[fold(alias)] = code
    return index


class PaymentMethodCatalog:
    """Resolves free-text payment methods to PaymentMethodChoices codes."""

    def __init__(self, catalog=None):
        catalog = catalog if catalog is not None else getattr(settings, 'MIGRATION_PAYMENT_METHODS', {})
        valid = set(PaymentMethodChoices.values)
        unknown = set(catalog) - valid
        if unknown:
            raise ValueError(f'Unknown payment method codes in catalog: {", ".join(sorted(unknown))}')
        self._index = build_alias_index(catalog)

    def resolve(self, value):
        """Return the canonical code for value, or None if unknown."""
        if not value:
            return None
        return self._index.get(fold(value))

    def codes(self):
        return sorted(set(self._index.values()))
