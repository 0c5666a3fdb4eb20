from functools import wraps
from flask import g, request
from errors import MissingTokenError, InvalidOrExpiredTokenError
from tokens import verify_token, InvalidToken
import logging

logger = logging.getLogger(__name__)

AUTH_HEADER = 'Authorization'
BEARER_PREFIX = 'Bearer '


def extract_bearer_token(header_value):
    """
    從 Authorization header 取出 token

    格式必須是 'Bearer <token>' (大小寫有分),prefix 後面緊接著
    至少一個非空白字元。token 是 prefix 之後的全部內容 (包含尾端空白)。
    不符合格式時回傳 None。
    """
    if not header_value or not header_value.startswith(BEARER_PREFIX):
        return None

    token = header_value[len(BEARER_PREFIX):]
    if not token or token[0].isspace():
        return None

    return token


def token_required(view):
    """
    保護需要登入的路由

    1. 沒有 token 或格式錯誤 → 401 Access token required
    2. token 驗證失敗 (簽章/格式/過期) → 403 Invalid or expired token
    3. 成功時把 identity 放到 g.current_user
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        token = extract_bearer_token(request.headers.get(AUTH_HEADER))
        if token is None:
            raise MissingTokenError()

        try:
            identity = verify_token(token)
        except InvalidToken as e:
            # 原因只記在 log,不回給前端
            logger.warning(f"Rejected token from {request.remote_addr}: {str(e)}")
            raise InvalidOrExpiredTokenError()

        g.current_user = identity
        return view(*args, **kwargs)

    return wrapper


def get_current_identity():
    """取得目前請求的使用者 identity,沒有登入時回傳 None"""
    return g.get('current_user')
