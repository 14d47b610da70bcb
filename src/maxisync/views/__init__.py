"""View controllers: consumers of the cache store and sync coordinator."""

from maxisync.views.base import ViewController
from maxisync.views.products import ProductsView
from maxisync.views.sales import SalesView, compute_stock_deduction
from maxisync.views.transactions import TransactionsView

__all__ = [
    "ViewController",
    "ProductsView",
    "SalesView",
    "TransactionsView",
    "compute_stock_deduction",
]
