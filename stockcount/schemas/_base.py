from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """
    通用基类：
    - 对外 JSON 用 camelCase（alias），Python 内部用 snake_case；
    - populate_by_name: 入参两种写法都接受；
    - from_attributes: 支持 ORM 对象直接转换。
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
