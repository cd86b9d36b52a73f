"""
Wholesale Service — 注文集約 (Order Aggregate)

注文は明細ごと一度に作成され、その後変わるのはステータスだけ。

状態遷移:
    PENDING → COMPLETED  (受け取り側が完了にする)

逆方向の遷移はない。COMPLETED に対して再度 COMPLETED を指定すると
completed_at を付け直す（既存挙動を維持）。
"""

from datetime import datetime

from .errors import ValidationError

PENDING = "pending"
COMPLETED = "completed"
STATUSES = (PENDING, COMPLETED)


class OrderAggregate:
    """注文のステータスを管理する。"""

    def __init__(self) -> None:
        self.id: int | None = None
        self.status: str = PENDING
        self.created_at: datetime | None = None
        self.completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "OrderAggregate":
        agg = cls()
        agg.id = row.id
        agg.status = row.status
        agg.created_at = row.created_at
        agg.completed_at = row.completed_at
        return agg

    # ── 状態遷移 ──────────────────────────────────

    def complete(self, now: datetime) -> None:
        self.status = COMPLETED
        self.completed_at = now

    def change_status(self, status: str, now: datetime) -> None:
        """指定ステータスへの遷移メソッドを呼び出す。"""
        handler = {
            COMPLETED: self.complete,
        }.get(status)
        if handler is None:
            if status == PENDING:
                raise ValidationError("Orders cannot be moved back to pending")
            raise ValidationError(f"Unknown order status: {status}")
        handler(now)
