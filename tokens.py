from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
import logging

logger = logging.getLogger(__name__)


class InvalidToken(Exception):
    """Token 簽章錯誤、格式錯誤或已過期"""


def issue_token(identity):
    """
    簽發 access token

    identity: {'userId': int, 'username': str}
    sub 放字串形式的 user id,userId / username 放在額外的 claims
    過期時間由 JWT_ACCESS_TOKEN_EXPIRES 決定 (預設 24 小時)
    """
    return create_access_token(
        identity=str(identity['userId']),
        additional_claims={
            'userId': identity['userId'],
            'username': identity['username']
        }
    )


def verify_token(token):
    """
    驗證 token,成功時回傳 {'userId', 'username'}

    任何失敗 (簽章、格式、過期、缺少 claims) 都 raise InvalidToken
    """
    try:
        claims = decode_token(token)
    except (PyJWTError, JWTExtendedException) as e:
        raise InvalidToken(str(e)) from e

    user_id = claims.get('userId')
    username = claims.get('username')
    if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(username, str):
        raise InvalidToken('Missing identity claims')

    return {'userId': user_id, 'username': username}
