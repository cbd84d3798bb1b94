"""金额 / 利率显示工具，供 Excel、PDF 导出与请求解析共用。

计算模块始终使用 float 金额；取整到整数货币单位只在这里（显示时）进行。
"""

from __future__ import annotations

from typing import Union
import math
import re


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def format_currency(amount: float) -> str:
    """整数金额，``.`` 作千分位分隔符，例如 1.234.567。"""
    rounded = int(math.floor(amount + 0.5))
    return f"{rounded:,}".replace(",", ".")


def parse_currency(value: Union[str, int, float]) -> Union[int, float]:
    """:func:`format_currency` 的逆操作；数字原样返回，无法解析的字符串返回 0。"""
    if isinstance(value, (int, float)):
        return value
    # 忽略尾部文字（如货币单位）："1.000 VND" -> 1000
    cleaned = (value or "").replace(".", "").replace(",", "")
    match = _LEADING_INT.match(cleaned)
    return int(match.group(1)) if match else 0


def format_rate(rate: float) -> str:
    return f"{rate:.2f}%"


def format_percent_of_income(ratio: float) -> str:
    return f"{ratio:.1f}%"
