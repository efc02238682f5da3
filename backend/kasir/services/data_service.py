"""
Whole-device export, import and wipe.

Import only restores reference data (products, customers, categories,
discounts, settings); transactions, the books (expenses, kasbon, audit logs)
and the sync queue are never imported. Imported records are written as-is and
are not queued for sync, but products must satisfy the same stock and barcode
rules the catalog enforces.
"""
from __future__ import annotations

import json
import logging

from ..models.customers import Customer
from ..models.inventory import Category, Product
from ..models.ledger import AuditLog, Expense, Kasbon
from ..models.promotions import Discount
from ..models.sales import Transaction
from ..time_utils import utcnow, to_utc_z
from ..validation import ValidationError
from .kv_store import KeyValueStore, StorageKeys, loads, record_list
from .products_service import check_product_record, check_unique_barcodes

logger = logging.getLogger(__name__)

EXPORTED = {
    "products": (StorageKeys.PRODUCTS, Product),
    "transactions": (StorageKeys.TRANSACTIONS, Transaction),
    "customers": (StorageKeys.CUSTOMERS, Customer),
    "categories": (StorageKeys.CATEGORIES, Category),
    "discounts": (StorageKeys.DISCOUNTS, Discount),
    "expenses": (StorageKeys.EXPENSES, Expense),
    "kasbon": (StorageKeys.KASBON, Kasbon),
    "audit_logs": (StorageKeys.AUDIT_LOGS, AuditLog),
}
IMPORTABLE = ("products", "customers", "categories", "discounts")

# Checks each imported record of a collection must pass
IMPORT_CHECKS = {
    "products": check_product_record,
}


def export_data(store: KeyValueStore) -> str:
    data = {}
    for name, (key, record_type) in EXPORTED.items():
        data[name] = [r.to_dict() for r in record_list(store, key, record_type).load()]
    raw_settings = store.get(StorageKeys.SETTINGS)
    data["settings"] = loads(raw_settings) if raw_settings is not None else None
    data["exported_at"] = to_utc_z(utcnow())
    return json.dumps(data, indent=2, ensure_ascii=False)


def _parse_collection(name: str, raw_records) -> list:
    if not isinstance(raw_records, list):
        raise ValidationError(f"Invalid {name}: expected a list")
    _, record_type = EXPORTED[name]
    check = IMPORT_CHECKS.get(name)
    records = []
    for raw in raw_records:
        try:
            record = record_type.from_dict(raw)
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise ValidationError(f"Invalid {name} record: {exc}")
        if check is not None:
            check(record)
        records.append(record)
    return records


def import_data(store: KeyValueStore, payload: str, *, attempts: int = 3) -> dict:
    """
    Replace reference collections present in the payload; returns counts.

    Raises ValidationError (or DuplicateBarcode for clashing products) before
    anything is written.
    """
    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise ValidationError(f"Invalid export file: {exc}")
    if not isinstance(data, dict):
        raise ValidationError("Invalid export file: expected an object")

    # Parse everything first so a bad record leaves the store untouched
    parsed = {}
    for name in IMPORTABLE:
        if data.get(name) is None:
            continue
        parsed[name] = _parse_collection(name, data[name])
    if "products" in parsed:
        check_unique_barcodes(parsed["products"])

    counts = {}
    for name, records in parsed.items():
        key, record_type = EXPORTED[name]
        collection = record_list(store, key, record_type, attempts=attempts)
        collection.mutate(lambda current, records=records: (records, None))
        counts[name] = len(records)
    if data.get("settings") is not None:
        store.set(StorageKeys.SETTINGS, json.dumps(data["settings"]).encode("utf-8"))
        counts["settings"] = 1

    logger.info("Data imported successfully: %s", counts)
    return counts


def clear_all_data(store: KeyValueStore) -> None:
    store.multi_delete(StorageKeys.all())
    logger.info("All data cleared successfully")
