"""
Wholesale Service — 金額・重量の換算 (Quantization Engine)

商品は「1 kg あたりの価格」で売られる。買い手は
  - 金額を指定する (amount モード) → 重量 = 金額 / 単価
  - 重量を指定する (weight モード) → 金額 = 重量 × 単価
のどちらかで購入量を決める。

現金で支払える金額は CURRENCY_STEP (250) の倍数だけ。
weight モードで端数が出た場合は、前後の支払い可能な金額を
候補 (suggestion) として返し、どちらかを選ばせる。

    raw = 0.25 kg × 4500 = 1125   (1125 % 250 != 0 → 支払い不可)
      ├─ 候補 1: 1000 → 0.2222 kg
      └─ 候補 2: 1250 → 0.2778 kg

I/O を持たない純粋関数のみ。
"""

import math
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .errors import ValidationError

CURRENCY_STEP = 250
WEIGHT_DECIMALS = 3

_NON_DIGITS = re.compile(r"[^0-9]")
_NON_DECIMAL = re.compile(r"[^0-9.]")
_LEADING_DECIMAL = re.compile(r"^\d*\.?\d*")


class Suggestion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    amount: int
    weight_kg: float


class Quote(BaseModel):
    """換算結果。suggestions が空でなければまだ確定できない。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    mode: Literal["amount", "weight"]
    unit_price: float
    amount: float
    weight_kg: float
    payable: bool
    suggestions: list[Suggestion] = []


# ── 入力のサニタイズ ─────────────────────────────


def _number(value) -> float | None:
    """JSON の数値はそのまま使う。負・NaN・無限大は 0 とみなす。"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return 0
    return value


def sanitize_amount(text: str | int | float | None) -> int:
    """数字以外を取り除いて整数にする。空なら 0。数値は小数部を切り捨てる。"""
    if text is None:
        return 0
    number = _number(text)
    if number is not None:
        return int(number)
    clean = _NON_DIGITS.sub("", str(text))
    return int(clean) if clean else 0


def sanitize_weight(text: str | int | float | None) -> float:
    """数字と '.' 以外を取り除き、先頭の有効な小数を読む。"""
    if text is None:
        return 0.0
    number = _number(text)
    if number is not None:
        return float(number)
    clean = _NON_DECIMAL.sub("", str(text))
    match = _LEADING_DECIMAL.match(clean).group(0)
    if not any(ch.isdigit() for ch in match):
        return 0.0
    return float(match)


def effective_unit_price(unit_price: float | int | None) -> float:
    """
    単価が未設定・不正なら 1 として扱う。

    ゼロ除算を避けるための既存挙動。設定ミスを隠してしまう点に注意。
    """
    try:
        price = float(unit_price)
    except (TypeError, ValueError):
        return 1
    if math.isnan(price) or price <= 0:
        return 1
    return price


# ── 換算 ─────────────────────────────────────────


def amount_from_weight(weight_kg: float, unit_price: float) -> float:
    return weight_kg * unit_price


def weight_from_amount(amount: float, unit_price: float) -> float:
    return amount / unit_price


def is_payable(amount: float) -> bool:
    """CURRENCY_STEP の倍数なら支払い可能。0 は「未入力」として常に可。"""
    return amount % CURRENCY_STEP == 0


def payable_bounds(raw_amount: float) -> tuple[int, int]:
    lower = math.floor(raw_amount / CURRENCY_STEP) * CURRENCY_STEP
    return lower, lower + CURRENCY_STEP


def suggestions(raw_amount: float, unit_price: float) -> list[Suggestion]:
    """支払い不可な金額に対して前後の候補を返す（下限が 0 なら省略）。"""
    if is_payable(raw_amount):
        return []
    lower, upper = payable_bounds(raw_amount)
    result = []
    if lower > 0:
        result.append(
            Suggestion(amount=lower, weight_kg=weight_from_amount(lower, unit_price))
        )
    result.append(
        Suggestion(amount=upper, weight_kg=weight_from_amount(upper, unit_price))
    )
    return result


def quote_by_amount(text: str | int | float | None, unit_price: float | None) -> Quote:
    """金額指定。金額はすでに整数なので常に受け付ける。"""
    price = effective_unit_price(unit_price)
    amount = sanitize_amount(text)
    return Quote(
        mode="amount",
        unit_price=price,
        amount=amount,
        weight_kg=weight_from_amount(amount, price),
        payable=True,
    )


def quote_by_weight(text: str | int | float | None, unit_price: float | None) -> Quote:
    """重量指定。端数が出れば候補付きで返す。"""
    price = effective_unit_price(unit_price)
    weight = sanitize_weight(text)
    raw = amount_from_weight(weight, price)
    candidates = suggestions(raw, price)
    return Quote(
        mode="weight",
        unit_price=price,
        amount=raw,
        weight_kg=weight,
        payable=not candidates,
        suggestions=candidates,
    )


def select_suggestion(quote: Quote, amount: int) -> Quote:
    """候補の一つを選び、確定可能な Quote にする。"""
    for suggestion in quote.suggestions:
        if suggestion.amount == amount:
            return quote.model_copy(
                update={
                    "amount": suggestion.amount,
                    "weight_kg": suggestion.weight_kg,
                    "payable": True,
                    "suggestions": [],
                }
            )
    raise ValidationError(f"{amount} is not one of the suggested amounts")


# ── 確定 ─────────────────────────────────────────


def finalize(amount: float, weight_kg: float) -> tuple[int, float]:
    """金額は整数に丸め、重量は小数 3 桁に丸める。"""
    if amount <= 0 or weight_kg <= 0:
        raise ValidationError("Amount and weight must be positive")
    return round(amount), round(weight_kg, WEIGHT_DECIMALS)


def finalize_quote(quote: Quote) -> tuple[int, float]:
    if quote.suggestions or not quote.payable:
        raise ValidationError(
            f"Amount {quote.amount:g} is not payable; choose a suggested amount"
        )
    return finalize(quote.amount, quote.weight_kg)


def reconciles(paid_amount: int, weight_kg: float, unit_price: float) -> bool:
    """
    paid_amount ≈ weight × 単価 か。

    重量は小数 3 桁に丸めて保存されるので、その丸め幅 (0.0005 kg) 分と
    金額の丸め幅 (0.5) を許容する。
    """
    tolerance = unit_price * 0.5 * 10**-WEIGHT_DECIMALS + 0.5
    return abs(paid_amount - weight_kg * unit_price) <= tolerance
