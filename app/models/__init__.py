from app.models.contact import Contact
from app.models.title import Title
from app.models.title_author import TitleAuthor
from app.models.contract import Contract, ContractStatus, SalesFormat, TierCalculationMode
from app.models.contract_tier import ContractTier
from app.models.sales_record import ReturnStatus, SalesRecord
from app.models.advance_ledger import AdvanceLedgerEntry, LedgerEntryType
from app.models.lifetime_sales import LifetimeSalesState, LifetimeSalesSnapshot
from app.models.statement_run import StatementRun, StatementRunStatus
from app.models.statement import Statement, StatementStatus

__all__ = [
    # Catalog models
    "Contact",
    "Title",
    "TitleAuthor",
    # Contract models
    "Contract",
    "ContractStatus",
    "ContractTier",
    "SalesFormat",
    "TierCalculationMode",
    # Sales models
    "SalesRecord",
    "ReturnStatus",
    "LifetimeSalesState",
    "LifetimeSalesSnapshot",
    # Royalty models
    "AdvanceLedgerEntry",
    "LedgerEntryType",
    "StatementRun",
    "StatementRunStatus",
    "Statement",
    "StatementStatus",
]
