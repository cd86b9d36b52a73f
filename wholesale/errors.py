"""
Wholesale Service — エラー定義

ドメイン層はこれらの例外を送出し、HTTP ステータスへの変換は
main.py の exception handler がまとめて行う。
"""


class WholesaleError(Exception):
    """全ドメイン例外の基底クラス"""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WholesaleError):
    """入力不正（空のバスケット、0 以下の価格・重量など）"""

    status_code = 400


class AuthenticationError(WholesaleError):
    """セッションが無い、またはユーザーが存在しない"""

    status_code = 401


class AuthorizationError(WholesaleError):
    """ロールが操作を許可していない"""

    status_code = 403


class NotFoundError(WholesaleError):
    status_code = 404


class PersistenceError(WholesaleError):
    """ストレージ I/O の失敗。自動リトライはしない。"""

    status_code = 503
