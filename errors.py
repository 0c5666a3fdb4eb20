"""
API 錯誤類型

所有預期內的錯誤都 raise 這裡的 exception,由 app.py 統一轉成
{"error": message} 的 JSON 回應。
"""


class ApiError(Exception):
    status_code = 500
    message = 'Internal server error'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.message)
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class RequestValidationError(ApiError):
    """輸入資料缺少或格式錯誤"""
    status_code = 400
    message = 'Validation failed'


class ConflictError(ApiError):
    status_code = 400
    message = 'Username already exists'


class UnauthenticatedError(ApiError):
    status_code = 401
    message = 'User not authenticated'


class InvalidCredentialsError(ApiError):
    # 不區分 username 不存在還是密碼錯誤,避免帳號枚舉攻擊
    status_code = 401
    message = 'Invalid credentials'


class MissingTokenError(ApiError):
    status_code = 401
    message = 'Access token required'


class InvalidOrExpiredTokenError(ApiError):
    # 過期和被竄改回一樣的訊息
    status_code = 403
    message = 'Invalid or expired token'


class NotFoundError(ApiError):
    # 任務不存在和不屬於你回一樣的訊息
    status_code = 404
    message = 'Task not found or access denied'
