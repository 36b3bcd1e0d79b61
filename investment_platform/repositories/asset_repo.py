"""
Asset repository — data-access layer for the ``assets`` table.

Assets are append-only, so generic ``create``/``get`` from
:class:`BaseRepository` is all the workflow needs.  A second asset for the
same investment surfaces as ``IntegrityError`` from the unique
``investment_id`` column.
"""

from investment_platform.models.asset import Asset
from investment_platform.repositories.base import BaseRepository


class AssetRepository(BaseRepository[Asset]):
    """Concrete repository for :class:`Asset` entities."""

    pass
