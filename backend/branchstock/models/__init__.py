from .reference import Branch, Product, Variant
from .inventory import ReasonCode, StockAccount, LedgerEntry
from .rankings import VariantSalesRanking, BranchVariantSalesRanking, BranchSalesSummary

__all__ = [
    'Branch', 'Product', 'Variant',
    'ReasonCode', 'StockAccount', 'LedgerEntry',
    'VariantSalesRanking', 'BranchVariantSalesRanking', 'BranchSalesSummary',
]
