"""服务层能力导出集合。"""

from parms_api.services.account_guard import AccountGuard
from parms_api.services.aggregation import AggregationService
from parms_api.services.tokens import TokenPair, TokenService

__all__ = ["AccountGuard", "AggregationService", "TokenPair", "TokenService"]
