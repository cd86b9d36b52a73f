"""
Wholesale Service — 認証・ロール

セッション管理そのものは Starlette の SessionMiddleware に任せ、
ここではパスワードのハッシュとロールのチェックだけを扱う。

  sender   : 商品の登録・編集、注文の送信
  receiver : 注文の受信、完了処理
  admin    : 統計の閲覧（完了処理も可）
"""

import hashlib
import hmac
import secrets

from .errors import AuthenticationError, AuthorizationError

SENDER = "sender"
RECEIVER = "receiver"
ADMIN = "admin"
ROLES = (SENDER, RECEIVER, ADMIN)

_ITERATIONS = 100_000


def hash_password(password: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), _ITERATIONS
    )
    return f"{salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, expected = password_hash.partition("$")
    actual = hash_password(password, salt).partition("$")[2]
    return hmac.compare_digest(actual, expected)


def require_role(user: dict | None, *roles: str) -> dict:
    """ユーザーのロールが roles のいずれかでなければ例外。"""
    if user is None:
        raise AuthenticationError("Not authenticated")
    if user["role"] not in roles:
        raise AuthorizationError(
            f"Role '{user['role']}' is not allowed to perform this action"
        )
    return user
