"""
Wiring of the checkout core around one explicitly supplied store handle.

Nothing here is module-global: a PosCore owns the store it was given, so tests
build one over a MemoryKeyValueStore and the Flask app builds one per request
over the SQL-backed store.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Mapping

from flask import current_app, g

from .extensions import db
from .models.promotions import DiscountTier
from .services.books_service import AuditTrail, ExpenseBook, KasbonBook
from .services.cart_service import Cart
from .services.connectivity import ReachabilityProbe
from .services.customers_service import CustomerBook
from .services.kv_store import KeyValueStore, SqlKeyValueStore
from .services.products_service import Catalog
from .services.promotions_service import DEFAULT_TIERS, DiscountBook, build_tiers
from .services.remote_backend import RemoteBackend
from .services.reporting_service import dashboard_stats
from .services.sales_service import Checkout, Payment, TransactionLedger
from .services.sync_service import SyncQueue
from .time_utils import utcnow


@dataclass(frozen=True)
class CoreSettings:
    tax_rate_bps: int = 1000
    loyalty_divisor: int = 10000
    discount_tiers: tuple[DiscountTier, ...] = DEFAULT_TIERS
    sync_max_attempts: int = 5
    write_attempts: int = 3
    utc_offset_minutes: int = 0

    @classmethod
    def from_config(cls, config: Mapping) -> "CoreSettings":
        tiers = config.get("DISCOUNT_TIERS")
        return cls(
            tax_rate_bps=int(config.get("TAX_RATE_BPS", 1000)),
            loyalty_divisor=int(config.get("LOYALTY_POINT_DIVISOR", 10000)),
            discount_tiers=build_tiers(tiers) if tiers else DEFAULT_TIERS,
            sync_max_attempts=int(config.get("SYNC_MAX_ATTEMPTS", 5)),
            write_attempts=int(config.get("STORAGE_WRITE_ATTEMPTS", 3)),
            utc_offset_minutes=int(config.get("REPORT_UTC_OFFSET_MINUTES", 0)),
        )


class PosCore:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        settings: CoreSettings | None = None,
        remote: RemoteBackend | None = None,
        probe: ReachabilityProbe | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = settings or CoreSettings()
        attempts = settings.write_attempts
        self.store = store
        self.settings = settings
        self.clock = clock

        self.ledger = TransactionLedger(store, attempts=attempts)
        self.sync = SyncQueue(
            store, remote, probe,
            max_attempts=settings.sync_max_attempts,
            write_attempts=attempts,
            clock=clock,
            on_transaction_status=self.ledger.set_sync_status,
        )
        self.ledger.sync = self.sync
        self.audit = AuditTrail(store, self.sync, attempts=attempts, clock=clock)
        self.expenses = ExpenseBook(store, self.sync, attempts=attempts, clock=clock)
        self.kasbon = KasbonBook(store, self.sync, self.audit, attempts=attempts, clock=clock)
        self.catalog = Catalog(store, self.sync, attempts=attempts, clock=clock)
        self.discounts = DiscountBook(store, self.sync, attempts=attempts)
        self.customers = CustomerBook(store, self.sync, attempts=attempts, clock=clock)
        self.cart = Cart(
            store, self.catalog,
            tax_rate_bps=settings.tax_rate_bps,
            default_tiers=settings.discount_tiers,
            attempts=attempts,
            clock=clock,
        )
        self.checkout = Checkout(
            self.cart, self.catalog, self.ledger, self.customers, self.audit,
            tax_rate_bps=settings.tax_rate_bps,
            loyalty_divisor=settings.loyalty_divisor,
            default_tiers=settings.discount_tiers,
            clock=clock,
        )

    def commit(self, payment: Payment, *, cashier_id: str, customer_id: str | None = None):
        return self.checkout.commit(payment, cashier_id=cashier_id, customer_id=customer_id)

    def cancel(self, transaction_id: str, *, cancelled_by: str, reason: str | None = None):
        return self.checkout.cancel(transaction_id, cancelled_by=cancelled_by, reason=reason)

    def dashboard(self, period: str = "today", now: datetime | None = None) -> dict:
        return dashboard_stats(
            self.ledger.list_transactions(),
            self.catalog.list_products(),
            period=period,
            now=now or self.clock(),
            utc_offset=timedelta(minutes=self.settings.utc_offset_minutes),
            expenses=self.expenses.list_expenses(),
        )


def current_core() -> PosCore:
    """Per-request core over the app's database session."""
    if "pos_core" not in g:
        g.pos_core = PosCore(
            SqlKeyValueStore(db.session),
            settings=CoreSettings.from_config(current_app.config),
            remote=current_app.extensions.get("kasir.remote"),
            probe=current_app.extensions.get("kasir.probe"),
        )
    return g.pos_core
