
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

TASK_STATUSES = ('PENDING', 'COMPLETED')


def utcnow():
    """目前的 UTC 時間 (naive,資料庫一律存 UTC)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    """UTC datetime 轉成 ISO 8601 字串,例如 2024-01-01T08:00:00.000Z"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec='milliseconds') + 'Z'

# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    # 唯一性由資料庫保證,避免同時註冊同一個 username
    username = db.Column(db.String(100), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # 關聯
    tasks = db.relationship('Task', backref='owner', lazy=True, cascade='all,delete-orphan',
                            passive_deletes=True)

    def __repr__(self):
        return f'<User {self.id} {self.username}>'

# ============================================
# 2. Task 模型
# ============================================
class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='PENDING')  # PENDING, COMPLETED

    # 建立時決定,之後不能轉移
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False)

    # 時間欄位
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # 索引
    __table_args__ = (
        db.Index('idx_task_user_created_at', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f'<Task {self.id} {self.status}>'
