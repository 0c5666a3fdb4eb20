from flask import Blueprint, jsonify
from marshmallow import Schema, fields, validate, validates_schema, post_load, ValidationError, EXCLUDE
from sqlalchemy import select, update, delete
from models import db, Task, TASK_STATUSES, utcnow, isoformat
from auth import get_json_body, validate_request_data
from errors import ApiError, UnauthenticatedError, RequestValidationError, NotFoundError
from middleware import token_required, get_current_identity
import logging
import re

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

TITLE_REQUIRED = 'Title is required'
TITLE_EMPTY = 'Title cannot be empty'
STATUS_INVALID = 'Status must be either PENDING or COMPLETED'
INVALID_TASK_ID = 'Invalid task ID'

# SQLite / PostgreSQL 的 integer 上限
MAX_TASK_ID = 2 ** 63 - 1

# ============================================
# Input Validation Schemas
# ============================================

def clean_description(value):
    """description 去掉前後空白,空字串存成 None"""
    if value is None:
        return None
    value = value.strip()
    return value or None


class CreateTaskSchema(Schema):
    """建立任務驗證"""

    class Meta:
        unknown = EXCLUDE

    title = fields.Str(load_default=None, allow_none=True,
                       error_messages={'invalid': TITLE_REQUIRED})
    description = fields.Str(load_default=None, allow_none=True)
    status = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.OneOf(TASK_STATUSES, error=STATUS_INVALID),
        error_messages={'invalid': STATUS_INVALID}
    )

    # title 要比 status 先檢查,所以 status 有錯時也要跑
    @validates_schema(skip_on_field_errors=False)
    def validate_title(self, data, **kwargs):
        title = data.get('title')
        if title is None or not title.strip():
            raise ValidationError(TITLE_REQUIRED)

    @post_load
    def clean(self, data, **kwargs):
        return {
            'title': data['title'].strip(),
            'description': clean_description(data.get('description')),
            'status': data.get('status') or 'PENDING'
        }


class UpdateTaskSchema(Schema):
    """
    更新任務驗證

    只有 request 裡有出現的欄位才會更新,
    沒出現的欄位不會出現在驗證結果裡 (跟「有出現但是 null」要分開)
    """

    class Meta:
        unknown = EXCLUDE

    title = fields.Str(allow_none=True, error_messages={'invalid': TITLE_EMPTY})
    description = fields.Str(allow_none=True)
    status = fields.Str(
        validate=validate.OneOf(TASK_STATUSES, error=STATUS_INVALID),
        error_messages={'invalid': STATUS_INVALID, 'null': STATUS_INVALID}
    )

    @validates_schema(skip_on_field_errors=False)
    def validate_title(self, data, **kwargs):
        if 'title' in data and (data['title'] is None or not data['title'].strip()):
            raise ValidationError(TITLE_EMPTY)

    @post_load
    def clean(self, data, **kwargs):
        if 'title' in data:
            data['title'] = data['title'].strip()
        if 'description' in data:
            data['description'] = clean_description(data['description'])
        return data

# ============================================
# 輔助函數
# ============================================

def require_identity():
    """
    取得目前使用者,沒有 identity 時回 401

    正常情況 token_required 一定會設定,這裡是最後一道檢查
    """
    identity = get_current_identity()
    if not identity or identity.get('userId') is None:
        raise UnauthenticatedError()
    return identity


def parse_task_id(raw_id):
    """path 裡的 id 必須是數字,否則回 400"""
    if not re.fullmatch(r'[0-9]+', raw_id):
        raise RequestValidationError(INVALID_TASK_ID)
    return int(raw_id)


def find_owned_task(task_id, user_id):
    """用 id 和 user_id 一起查,不存在和不屬於你是同一種結果"""
    if task_id > MAX_TASK_ID:
        return None
    return db.session.execute(
        select(Task).filter_by(id=task_id, user_id=user_id)
    ).scalar_one_or_none()


def serialize_task(task):
    return {
        'id': task.id,
        'title': task.title,
        'description': task.description,
        'status': task.status,
        'userId': task.user_id,
        'createdAt': isoformat(task.created_at),
        'updatedAt': isoformat(task.updated_at)
    }

# ============================================
# 查詢自己的任務
# ============================================

@tasks_bp.route('', methods=['GET'])
@token_required
def get_tasks():
    """查詢目前使用者的所有任務 (最新的在前)"""
    identity = require_identity()

    try:
        tasks = db.session.execute(
            select(Task)
            .filter_by(user_id=identity['userId'])
            .order_by(Task.created_at.desc(), Task.id.desc())
        ).scalars().all()
    except Exception as e:
        logger.error(f"Error fetching tasks: {str(e)}", exc_info=True)
        raise ApiError()

    return jsonify({
        'tasks': [serialize_task(task) for task in tasks],
        'total': len(tasks)
    }), 200

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('', methods=['POST'])
@token_required
def create_task():
    """
    建立任務

    title / description 會去掉前後空白,status 預設 PENDING
    """
    identity = require_identity()

    result = validate_request_data(CreateTaskSchema, get_json_body())

    task = Task(
        title=result['title'],
        description=result['description'],
        status=result['status'],
        user_id=identity['userId']
    )

    try:
        db.session.add(task)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        raise ApiError()

    logger.info(f"Task {task.id} created by user {identity['username']}")

    return jsonify(serialize_task(task)), 201

# ============================================
# 更新任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['PUT'])
@token_required
def update_task(task_id):
    """
    更新任務 (partial update)

    檢查順序:
    1. 登入身分
    2. task id 格式
    3. 任務存在而且屬於自己
    4. 欄位內容
    """
    identity = require_identity()
    task_id = parse_task_id(task_id)

    task = find_owned_task(task_id, identity['userId'])
    if not task:
        raise NotFoundError()

    result = validate_request_data(UpdateTaskSchema, get_json_body())

    if not result:
        # 沒有任何欄位,不寫入資料庫
        return jsonify(serialize_task(task)), 200

    values = dict(result)
    values['updated_at'] = utcnow()

    try:
        # 一個 statement 同時比對 id 和 owner,避免查詢後被刪掉的 race
        outcome = db.session.execute(
            update(Task)
            .where(Task.id == task_id, Task.user_id == identity['userId'])
            .values(**values)
        )
        updated = outcome.rowcount
        if updated:
            db.session.commit()
        else:
            db.session.rollback()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task update error: {str(e)}", exc_info=True)
        raise ApiError()

    if not updated:
        raise NotFoundError()

    logger.info(f"Task {task_id} updated by user {identity['username']}: {sorted(result)}")

    task = db.session.get(Task, task_id)
    return jsonify(serialize_task(task)), 200

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['DELETE'])
@token_required
def delete_task(task_id):
    """刪除任務 (永久刪除,無法復原)"""
    identity = require_identity()
    task_id = parse_task_id(task_id)

    if task_id > MAX_TASK_ID:
        raise NotFoundError()

    try:
        outcome = db.session.execute(
            delete(Task).where(Task.id == task_id, Task.user_id == identity['userId'])
        )
        deleted = outcome.rowcount
        if deleted:
            db.session.commit()
        else:
            db.session.rollback()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task deletion error: {str(e)}", exc_info=True)
        raise ApiError()

    if not deleted:
        raise NotFoundError()

    logger.info(f"Task {task_id} deleted by user {identity['username']}")

    return jsonify({
        'message': 'Task deleted successfully'
    }), 200
