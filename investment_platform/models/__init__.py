"""SQLModel table models — import here so metadata is populated."""

from investment_platform.models.asset import Asset  # noqa: F401
from investment_platform.models.investment import Investment  # noqa: F401
from investment_platform.models.opportunity import InvestmentOpportunity  # noqa: F401
from investment_platform.models.transaction import Transaction  # noqa: F401
from investment_platform.models.user import User, UserProfile  # noqa: F401
