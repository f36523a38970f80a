from app.models.commission import (
    CommissionRule, CommissionTier, CommissionRecord,
    RuleType, CommissionBase, CustomerLevel, SourceType, RecordStatus,
)
from app.models.penalty import PenaltyRule, PenaltyRecord, PenaltyType, PenaltyRecordStatus
from app.models.settlement import Settlement, SettlementStatus
from app.models.scheme_config import SchemeConfigEntry

__all__ = [
    "CommissionRule",
    "CommissionTier",
    "CommissionRecord",
    "RuleType",
    "CommissionBase",
    "CustomerLevel",
    "SourceType",
    "RecordStatus",
    "PenaltyRule",
    "PenaltyRecord",
    "PenaltyType",
    "PenaltyRecordStatus",
    "Settlement",
    "SettlementStatus",
    "SchemeConfigEntry",
]
