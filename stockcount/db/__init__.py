# stockcount/db/__init__.py
"""
数据库包：
- base     → ORM Base + init_models()
- session  → 异步 Engine / AsyncSession 工厂
- dialect  → 幂等写入用的方言 insert
"""

__all__ = []
