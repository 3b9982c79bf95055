# stockcount/models/__init__.py
"""
统一导出 ORM 模型。
"""

from importlib import import_module


def _export(module_name: str, class_name: str) -> None:
    module = import_module(module_name)
    globals()[class_name] = getattr(module, class_name)


MODEL_SPECS = [
    # -------- 主数据 --------
    ("stockcount.models.store", "Store"),
    ("stockcount.models.store", "Product"),
    ("stockcount.models.store", "StoreProduct"),
    ("stockcount.models.user", "User"),
    ("stockcount.models.user", "StoreCapabilityGrant"),
    # -------- 台账 --------
    ("stockcount.models.inventory_movement", "InventoryMovement"),
    # -------- 盘点 --------
    ("stockcount.models.count_session", "InventoryCountSession"),
    ("stockcount.models.count_item", "InventoryCountItem"),
    # -------- 审计 --------
    ("stockcount.models.audit_event", "AuditEvent"),
]

for _mod, _cls in MODEL_SPECS:
    _export(_mod, _cls)

__all__ = [cls for _, cls in MODEL_SPECS]
